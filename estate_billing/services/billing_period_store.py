"""
Billing period loading.

Decides whether a (property, billing period) pair is billed for the first
time (create mode) or already has bills that are being corrected (edit mode),
and produces the bill lines the session works on.
"""
import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from estate_billing.services import billing_calculator
from estate_billing.services.billing_repository import (
    VACANT, BillingRepository, UnitRecord, UtilityBillRecord, call_with_timeout,
)
from estate_billing.services.meter_reading_resolver import resolve_many

logger = logging.getLogger(__name__)


class BillingMode(str, Enum):
    CREATE = "create"
    EDIT = "edit"


@dataclass
class BillLine:
    """One unit's bill as it is being entered or corrected."""

    unit_id: Any
    unit_number: str
    tenant_name: str = VACANT
    arrears_bf: float = 0.0
    previous_reading: float = 0.0
    current_reading: Optional[float] = None
    units_consumed: float = 0.0
    rate: float = 0.0
    total_amount: float = 0.0
    bill_id: Any = None
    version: Optional[int] = None
    regressed: bool = False
    regression_acknowledged: bool = False

    @property
    def is_persisted(self) -> bool:
        return self.bill_id is not None

    def recompute(self, rate: Optional[float] = None) -> None:
        if rate is not None:
            self.rate = rate
        result = billing_calculator.compute(self.previous_reading, self.current_reading, self.rate)
        self.units_consumed = result.units_consumed
        self.total_amount = result.total_amount
        self.regressed = result.regressed

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["unit_id"] = str(self.unit_id)
        data["bill_id"] = str(self.bill_id) if self.bill_id is not None else None
        return data


@dataclass
class LoadResult:
    mode: BillingMode
    lines: List[BillLine]
    rate: float
    warnings: List[dict] = field(default_factory=list)


def _line_from_bill(bill: UtilityBillRecord, unit: Optional[UnitRecord]) -> BillLine:
    # Stored values are shown as persisted, not recomputed
    return BillLine(
        unit_id=bill.unit_id,
        unit_number=unit.unit_number if unit else (bill.unit_number or str(bill.unit_id)),
        tenant_name=unit.tenant_name if unit else (bill.tenant_name or VACANT),
        arrears_bf=float(bill.arrears_bf or 0),
        previous_reading=float(bill.previous_reading or 0),
        current_reading=float(bill.current_reading or 0),
        units_consumed=float(bill.units_consumed or 0),
        rate=float(bill.rate or 0),
        total_amount=float(bill.total_amount or 0),
        bill_id=bill.id,
        version=bill.version,
        regressed=float(bill.current_reading or 0) < float(bill.previous_reading or 0),
    )


class BillingPeriodStore:
    """Loads bill lines for one property and billing period"""

    def __init__(self, repo: BillingRepository):
        self.repo = repo

    async def init_create_lines(
        self,
        units: Sequence[UnitRecord],
        period: date,
        rate: Optional[float],
    ) -> LoadResult:
        """Fresh drafts, one per unit, seeded with each unit's previous reading"""
        readings, warnings = await resolve_many(self.repo, [u.id for u in units], period)
        session_rate = float(rate or 0)
        lines = [
            BillLine(
                unit_id=unit.id,
                unit_number=unit.unit_number,
                tenant_name=unit.tenant_name,
                previous_reading=readings.get(unit.id, 0.0),
                rate=session_rate,
            )
            for unit in units
        ]
        return LoadResult(mode=BillingMode.CREATE, lines=lines, rate=session_rate, warnings=warnings)

    async def list_units(self, property_id: UUID) -> List[UnitRecord]:
        return await call_with_timeout(self.repo.list_units(property_id), operation="load units")

    async def load_or_init(self, property_id: UUID, period: date, rate: Optional[float] = None) -> LoadResult:
        units = await self.list_units(property_id)
        if not units:
            logger.info(f"[BILLING] Property {property_id} has no units")
            return LoadResult(mode=BillingMode.CREATE, lines=[], rate=float(rate or 0))

        bills = await call_with_timeout(
            self.repo.list_utility_bills([u.id for u in units], period),
            operation="load utility bills",
        )
        if not bills:
            logger.info(f"[BILLING] No bills for {period:%Y-%m}, create mode with {len(units)} units")
            return await self.init_create_lines(units, period, rate)

        units_by_id = {u.id: u for u in units}
        lines = [_line_from_bill(bill, units_by_id.get(bill.unit_id)) for bill in bills]
        lines.sort(key=lambda line: line.unit_number)

        warnings = []
        first_rate = float(bills[0].rate or 0)
        if any(float(b.rate or 0) != first_rate for b in bills[1:]):
            logger.warning(f"[BILLING] Bills for {period:%Y-%m} carry different rates, using {first_rate}")
            warnings.append({
                "kind": "rate_divergence",
                "message": f"Bills in this period use different rates, saving applies {first_rate:g} to every bill",
            })

        billed = {bill.unit_id for bill in bills}
        unbilled = [u for u in units if u.id not in billed]
        if unbilled:
            warnings.append({
                "kind": "unbilled_units",
                "unit_ids": [str(u.id) for u in unbilled],
                "message": "No bill yet for units " + ", ".join(u.unit_number for u in unbilled),
            })

        logger.info(f"[BILLING] Loaded {len(lines)} bills for {period:%Y-%m}, edit mode")
        return LoadResult(mode=BillingMode.EDIT, lines=lines, rate=first_rate, warnings=warnings)
