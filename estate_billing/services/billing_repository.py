"""
Billing repository boundary.

The billing core never talks to the database directly. It receives a
repository bound to the caller's RequestContext and awaits these operations:

    list_units(property_id)                    -> [UnitRecord]
    list_utility_bills(unit_ids, period)       -> [UtilityBillRecord]
    latest_utility_bill_before(unit_id, period)-> UtilityBillRecord | None
    insert_utility_bills(rows)                 -> [RowOutcome]
    update_utility_bill(id, fields, version)   -> UtilityBillRecord
    list_properties()                          -> [{id, name}]

plus the joined reads used by statements and reports. Implementations map
their driver errors to the typed errors in core.exceptions, so a uniqueness
violation always surfaces as ConflictError.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable, Dict, List, Optional, Sequence, TypeVar
from uuid import UUID

from estate_billing.core.config import settings
from estate_billing.core.exceptions import BillingError, TransientFetchError
from estate_billing.core.security import RequestContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

VACANT = "Vacant"

# Columns an edit may change; unit and billing month are part of the bill's identity
UPDATABLE_BILL_FIELDS = (
    "arrears_bf",
    "previous_reading",
    "current_reading",
    "units_consumed",
    "rate",
    "total_amount",
)


# ── Records ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TenantRef:
    id: Any
    name: str


@dataclass(frozen=True)
class UnitRecord:
    id: Any
    unit_number: str
    property_id: Any = None
    tenant: Optional[TenantRef] = None

    @property
    def is_occupied(self) -> bool:
        return self.tenant is not None

    @property
    def tenant_name(self) -> str:
        return self.tenant.name if self.tenant else VACANT


@dataclass
class UtilityBillRecord:
    unit_id: Any
    billing_month: date
    current_reading: float
    rate: float
    arrears_bf: float = 0.0
    previous_reading: float = 0.0
    units_consumed: float = 0.0
    total_amount: float = 0.0
    id: Any = None
    version: int = 1
    created_at: Optional[datetime] = None
    # Joined display fields, filled by reads only
    unit_number: Optional[str] = None
    tenant_name: Optional[str] = None
    property_name: Optional[str] = None

    def insert_values(self) -> Dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "billing_month": self.billing_month,
            "arrears_bf": self.arrears_bf,
            "previous_reading": self.previous_reading,
            "current_reading": self.current_reading,
            "units_consumed": self.units_consumed,
            "rate": self.rate,
            "total_amount": self.total_amount,
        }


@dataclass
class RowOutcome:
    unit_id: Any
    record: Optional[UtilityBillRecord] = None
    error: Optional[BillingError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ── Timeouts ──────────────────────────────────────────────────────────────────

async def call_with_timeout(
    awaitable: Awaitable[T],
    operation: str = "request",
    timeout: Optional[float] = None,
) -> T:
    """Await a repository call, turning an expired deadline into TransientFetchError."""
    limit = timeout if timeout is not None else settings.BILLING_REQUEST_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(awaitable, timeout=limit)
    except asyncio.TimeoutError as exc:
        logger.warning(f"[BILLING] {operation} timed out after {limit:.0f}s")
        raise TransientFetchError(f"{operation} timed out after {limit:.0f}s", operation=operation) from exc


# ── Repository ────────────────────────────────────────────────────────────────

class BillingRepository(ABC):
    """Request-scoped access to properties, units, bills, payments and invoices."""

    def __init__(self, context: RequestContext):
        self.context = context

    # Billing ------------------------------------------------------------------

    @abstractmethod
    async def list_properties(self) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_property(self, property_id: UUID) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def list_units(self, property_id: UUID) -> List[UnitRecord]:
        ...

    @abstractmethod
    async def get_unit(self, unit_id: UUID) -> Optional[UnitRecord]:
        ...

    @abstractmethod
    async def list_utility_bills(self, unit_ids: Sequence[UUID], period: date) -> List[UtilityBillRecord]:
        ...

    @abstractmethod
    async def latest_utility_bill_before(self, unit_id: UUID, period: date) -> Optional[UtilityBillRecord]:
        ...

    @abstractmethod
    async def insert_utility_bill(self, row: UtilityBillRecord) -> UtilityBillRecord:
        ...

    @abstractmethod
    async def update_utility_bill(
        self,
        bill_id: UUID,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> UtilityBillRecord:
        ...

    async def insert_utility_bills(
        self,
        rows: Sequence[UtilityBillRecord],
        timeout: Optional[float] = None,
    ) -> List[RowOutcome]:
        """Insert every row independently and report one outcome per row."""

        async def _insert(row: UtilityBillRecord) -> RowOutcome:
            try:
                record = await call_with_timeout(
                    self.insert_utility_bill(row), operation="insert utility bill", timeout=timeout
                )
                return RowOutcome(unit_id=row.unit_id, record=record)
            except BillingError as exc:
                return RowOutcome(unit_id=row.unit_id, error=exc)

        return list(await asyncio.gather(*(_insert(row) for row in rows)))

    # Units --------------------------------------------------------------------

    @abstractmethod
    async def unit_has_bills(self, unit_id: UUID) -> bool:
        ...

    @abstractmethod
    async def delete_unit(self, unit_id: UUID) -> None:
        ...

    # Statements and reports ---------------------------------------------------

    @abstractmethod
    async def get_payment(self, payment_id: UUID) -> Optional[Dict[str, Any]]:
        """Payment joined with tenant_name and property_name."""

    @abstractmethod
    async def get_invoice(self, invoice_id: UUID) -> Optional[Dict[str, Any]]:
        """Invoice joined with tenant_name, unit_number and property_name."""

    @abstractmethod
    async def get_tenant(self, tenant_id: UUID) -> Optional[Dict[str, Any]]:
        """Tenant joined with unit_number and property_name."""

    @abstractmethod
    async def list_tenant_payments(self, tenant_id: UUID) -> List[Dict[str, Any]]:
        """Payments of one tenant, newest first."""

    @abstractmethod
    async def list_payments(
        self, start: date, end: date, property_id: Optional[UUID] = None
    ) -> List[Dict[str, Any]]:
        """Payments dated within [start, end] joined with tenant and property names."""

    @abstractmethod
    async def list_units_with_property(self, property_id: Optional[UUID] = None) -> List[Dict[str, Any]]:
        """Units joined with property_name and current tenant contact fields."""

    @abstractmethod
    async def list_utility_bills_between(
        self, start: date, end: date, property_id: Optional[UUID] = None
    ) -> List[UtilityBillRecord]:
        """Bills whose billing month falls within [start, end], with display joins."""

    @abstractmethod
    async def list_tenants(self, property_id: Optional[UUID] = None) -> List[Dict[str, Any]]:
        """Tenants joined with unit_number, property_name and their payments."""
