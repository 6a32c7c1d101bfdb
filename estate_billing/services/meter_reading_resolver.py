"""
Previous meter reading lookup.

A unit's previous reading for a period is the current reading of its most
recent bill strictly before that period, or 0 when it has never been billed.
"""
import asyncio
import logging
from datetime import date
from typing import Dict, List, Sequence, Tuple
from uuid import UUID

from estate_billing.core.exceptions import TransientFetchError
from estate_billing.services.billing_repository import BillingRepository, call_with_timeout

logger = logging.getLogger(__name__)


async def resolve_previous_reading(repo: BillingRepository, unit_id: UUID, period: date) -> float:
    """Raises TransientFetchError when the lookup fails or times out."""
    bill = await call_with_timeout(
        repo.latest_utility_bill_before(unit_id, period),
        operation="load previous reading",
    )
    if bill is None:
        return 0.0
    return float(bill.current_reading or 0)


async def resolve_many(
    repo: BillingRepository,
    unit_ids: Sequence[UUID],
    period: date,
) -> Tuple[Dict[UUID, float], List[dict]]:
    """
    Resolve previous readings for many units concurrently.

    A failed lookup does not abort the batch: that unit falls back to 0 and a
    ``previous_reading_unavailable`` warning is returned so the operator can
    check the value before saving.
    """

    async def _one(unit_id):
        try:
            return unit_id, await resolve_previous_reading(repo, unit_id, period), None
        except TransientFetchError as exc:
            return unit_id, 0.0, exc

    readings: Dict[UUID, float] = {}
    warnings: List[dict] = []
    for unit_id, reading, error in await asyncio.gather(*(_one(u) for u in unit_ids)):
        readings[unit_id] = reading
        if error is not None:
            logger.warning(f"[BILLING] Previous reading unavailable for unit {unit_id}: {error.message}")
            warnings.append({
                "kind": "previous_reading_unavailable",
                "unit_id": str(unit_id),
                "message": "Previous reading could not be loaded, defaulted to 0",
            })
    return readings, warnings
