"""
Bill Persister
Writes a billing session's lines as independent per-unit writes.

Lines without a bill id are inserted, lines with one are updated in place.
All writes are started together and the outcome is reported only after every
one of them has settled, so the caller always learns exactly which units
were saved and which were not.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from estate_billing.core.exceptions import BillingError
from estate_billing.services.billing_periods import normalize_billing_period
from estate_billing.services.billing_period_store import BillLine
from estate_billing.services.billing_repository import (
    BillingRepository, RowOutcome, UtilityBillRecord, call_with_timeout,
)

logger = logging.getLogger(__name__)


@dataclass
class PersistedLine:
    unit_id: Any
    unit_number: str
    bill: UtilityBillRecord


@dataclass
class FailedLine:
    unit_id: Any
    unit_number: str
    error_kind: str
    message: str
    error: Optional[BillingError] = field(default=None, repr=False, compare=False)


@dataclass
class PersistResult:
    succeeded: List[PersistedLine] = field(default_factory=list)
    failed: List[FailedLine] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": [
                {
                    "unit_id": str(s.unit_id),
                    "unit_number": s.unit_number,
                    "bill_id": str(s.bill.id) if s.bill.id is not None else None,
                    "version": s.bill.version,
                }
                for s in self.succeeded
            ],
            "failed": [
                {
                    "unit_id": str(f.unit_id),
                    "unit_number": f.unit_number,
                    "error": f.error_kind,
                    "detail": f.message,
                }
                for f in self.failed
            ],
        }


class BillPersister:
    """Saves bill lines through a billing repository"""

    def __init__(self, repo: BillingRepository, timeout: Optional[float] = None):
        self.repo = repo
        self.timeout = timeout

    async def persist(self, period, rate: float, lines: Sequence[BillLine]) -> PersistResult:
        billing_month = normalize_billing_period(period)
        inserts = [line for line in lines if not line.is_persisted]
        updates = [line for line in lines if line.is_persisted]

        insert_outcomes, *update_outcomes = await asyncio.gather(
            self._insert_all(billing_month, rate, inserts),
            *(self._update(line, rate) for line in updates),
        )

        result = PersistResult()
        by_unit = {line.unit_id: line for line in lines}
        for outcome in list(insert_outcomes) + update_outcomes:
            line = by_unit[outcome.unit_id]
            if outcome.ok:
                result.succeeded.append(PersistedLine(line.unit_id, line.unit_number, outcome.record))
            else:
                logger.warning(f"[PERSIST] Unit {line.unit_number} failed: {outcome.error.message}")
                result.failed.append(FailedLine(
                    unit_id=line.unit_id,
                    unit_number=line.unit_number,
                    error_kind=outcome.error.kind,
                    message=outcome.error.message,
                    error=outcome.error,
                ))

        logger.info(
            f"[PERSIST] {billing_month:%Y-%m}: {len(inserts)} insert(s), {len(updates)} update(s), "
            f"{len(result.succeeded)}/{result.total} saved"
        )
        return result

    async def _insert_all(self, billing_month: date, rate: float, lines: Sequence[BillLine]) -> List[RowOutcome]:
        if not lines:
            return []
        rows = [
            UtilityBillRecord(
                unit_id=line.unit_id,
                billing_month=billing_month,
                arrears_bf=line.arrears_bf,
                previous_reading=line.previous_reading,
                current_reading=line.current_reading,
                units_consumed=line.units_consumed,
                rate=rate,
                total_amount=line.total_amount,
            )
            for line in lines
        ]
        return await self.repo.insert_utility_bills(rows, timeout=self.timeout)

    async def _update(self, line: BillLine, rate: float) -> RowOutcome:
        fields = {
            "arrears_bf": line.arrears_bf,
            "previous_reading": line.previous_reading,
            "current_reading": line.current_reading,
            "units_consumed": line.units_consumed,
            "rate": rate,
            "total_amount": line.total_amount,
        }
        try:
            record = await call_with_timeout(
                self.repo.update_utility_bill(line.bill_id, fields, expected_version=line.version),
                operation="update utility bill",
                timeout=self.timeout,
            )
        except BillingError as exc:
            return RowOutcome(unit_id=line.unit_id, error=exc)
        return RowOutcome(unit_id=line.unit_id, record=record)
