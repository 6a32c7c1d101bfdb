"""
SQLAlchemy billing repository.

Runs against the engine in estate_billing.database: SQLite for local
development, the Supabase Postgres pooler in production. Each write commits
on its own, so one failing bill never rolls back its siblings.

The methods are async only to share the repository interface. The Session
calls inside them block the event loop and never yield, so the timeout in
call_with_timeout cannot interrupt a slow query here. Bounded waits rely on
the driver and pool timeouts set in estate_billing.database.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, joinedload, selectinload

from estate_billing.core.exceptions import (
    ConflictError, NotFoundError, StaleWriteError, TransientFetchError, ValidationError,
)
from estate_billing.core.security import RequestContext
from estate_billing.models.payment import Invoice, Payment
from estate_billing.models.property import Property, Unit
from estate_billing.models.tenant import Tenant
from estate_billing.models.utility_bill import UtilityBill
from estate_billing.services.billing_repository import (
    UPDATABLE_BILL_FIELDS, BillingRepository, TenantRef, UnitRecord, UtilityBillRecord,
)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code is not None:
        return code == UNIQUE_VIOLATION
    return "UNIQUE constraint failed" in str(orig)


def _unit_record(unit: Unit) -> UnitRecord:
    tenant = unit.current_tenant
    return UnitRecord(
        id=unit.id,
        unit_number=unit.unit_number,
        property_id=unit.property_id,
        tenant=TenantRef(id=tenant.id, name=tenant.name) if tenant else None,
    )


def _bill_record(bill: UtilityBill, unit: Optional[Unit] = None) -> UtilityBillRecord:
    record = UtilityBillRecord(
        id=bill.id,
        unit_id=bill.unit_id,
        billing_month=bill.billing_month,
        arrears_bf=bill.arrears_bf,
        previous_reading=bill.previous_reading,
        current_reading=bill.current_reading,
        units_consumed=bill.units_consumed,
        rate=bill.rate,
        total_amount=bill.total_amount,
        version=bill.version,
        created_at=bill.created_at,
    )
    if unit is not None:
        tenant = unit.current_tenant
        record.unit_number = unit.unit_number
        record.tenant_name = tenant.name if tenant else None
        record.property_name = unit.property.name if unit.property else None
    return record


def _payment_to_dict(p: Payment) -> dict:
    return {
        "id": str(p.id),
        "tenant_id": str(p.tenant_id) if p.tenant_id else None,
        "property_id": str(p.property_id) if p.property_id else None,
        "amount": p.amount,
        "payment_date": p.payment_date,
        "payment_method": p.payment_method,
        "status": p.status,
        "payment_type": p.payment_type,
        "reference": p.reference,
        "notes": p.notes,
        "tenant_name": p.tenant.name if p.tenant else None,
        "property_name": p.property.name if p.property else None,
    }


def _day_bounds(start: date, end: date):
    return datetime.combine(start, time.min), datetime.combine(end, time.max)


class SqlBillingRepository(BillingRepository):
    """Billing repository over a synchronous SQLAlchemy session."""

    def __init__(self, db: Session, context: RequestContext):
        super().__init__(context)
        self.db = db

    @contextmanager
    def _guard(self, operation: str):
        try:
            yield
        except OperationalError as exc:
            self.db.rollback()
            logger.error(f"[BILLING][SQL] {operation} failed: {exc}")
            raise TransientFetchError(f"Could not {operation}", operation=operation) from exc

    # Billing ------------------------------------------------------------------

    async def list_properties(self) -> List[Dict[str, Any]]:
        with self._guard("load properties"):
            rows = self.db.query(Property).order_by(Property.name).all()
        return [{"id": p.id, "name": p.name} for p in rows]

    async def get_property(self, property_id: UUID) -> Optional[Dict[str, Any]]:
        with self._guard("load property"):
            prop = self.db.get(Property, property_id)
        if not prop:
            return None
        return {"id": prop.id, "name": prop.name, "address": prop.address}

    async def list_units(self, property_id: UUID) -> List[UnitRecord]:
        with self._guard("load units"):
            units = (
                self.db.query(Unit)
                .options(selectinload(Unit.tenants))
                .filter(Unit.property_id == property_id)
                .order_by(Unit.unit_number)
                .all()
            )
        return [_unit_record(u) for u in units]

    async def get_unit(self, unit_id: UUID) -> Optional[UnitRecord]:
        with self._guard("load unit"):
            unit = self.db.get(Unit, unit_id)
        return _unit_record(unit) if unit else None

    async def list_utility_bills(self, unit_ids: Sequence[UUID], period: date) -> List[UtilityBillRecord]:
        if not unit_ids:
            return []
        with self._guard("load utility bills"):
            bills = (
                self.db.query(UtilityBill)
                .options(
                    joinedload(UtilityBill.unit).selectinload(Unit.tenants),
                    joinedload(UtilityBill.unit).joinedload(Unit.property),
                )
                .filter(UtilityBill.billing_month == period, UtilityBill.unit_id.in_(list(unit_ids)))
                .all()
            )
        bills.sort(key=lambda b: b.unit.unit_number)
        return [_bill_record(b, b.unit) for b in bills]

    async def latest_utility_bill_before(self, unit_id: UUID, period: date) -> Optional[UtilityBillRecord]:
        with self._guard("load previous reading"):
            bill = (
                self.db.query(UtilityBill)
                .filter(UtilityBill.unit_id == unit_id, UtilityBill.billing_month < period)
                .order_by(UtilityBill.billing_month.desc())
                .first()
            )
        return _bill_record(bill) if bill else None

    async def insert_utility_bill(self, row: UtilityBillRecord) -> UtilityBillRecord:
        bill = UtilityBill(**row.insert_values(), version=1, recorded_by=self.context.actor)
        with self._guard("save utility bill"):
            self.db.add(bill)
            try:
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                if _is_unique_violation(exc):
                    raise ConflictError(unit_id=str(row.unit_id)) from exc
                raise ValidationError(
                    f"Bill rejected by the database: {exc.orig}", unit_id=row.unit_id
                ) from exc
            self.db.refresh(bill)
        logger.info(f"[BILLING][SQL] Inserted bill {bill.id} for unit {row.unit_id}")
        return _bill_record(bill)

    async def update_utility_bill(
        self,
        bill_id: UUID,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> UtilityBillRecord:
        values = {k: fields[k] for k in UPDATABLE_BILL_FIELDS if k in fields}
        stmt = update(UtilityBill).where(UtilityBill.id == bill_id)
        if expected_version is not None:
            stmt = stmt.where(UtilityBill.version == expected_version)
        stmt = stmt.values(
            **values,
            version=UtilityBill.version + 1,
            recorded_by=self.context.actor,
            updated_at=datetime.now(timezone.utc),
        ).execution_options(synchronize_session=False)

        with self._guard("update utility bill"):
            try:
                result = self.db.execute(stmt)
            except IntegrityError as exc:
                self.db.rollback()
                raise ValidationError(f"Bill rejected by the database: {exc.orig}") from exc

            if result.rowcount == 0:
                self.db.rollback()
                if self.db.get(UtilityBill, bill_id) is None:
                    raise NotFoundError(f"Utility bill {bill_id} not found", bill_id=str(bill_id))
                raise StaleWriteError(bill_id=str(bill_id))

            self.db.commit()
            bill = self.db.get(UtilityBill, bill_id, populate_existing=True)
        return _bill_record(bill)

    # Units --------------------------------------------------------------------

    async def unit_has_bills(self, unit_id: UUID) -> bool:
        with self._guard("check unit bills"):
            return self.db.query(UtilityBill.id).filter(UtilityBill.unit_id == unit_id).first() is not None

    async def delete_unit(self, unit_id: UUID) -> None:
        with self._guard("delete unit"):
            unit = self.db.get(Unit, unit_id)
            if unit is None:
                raise NotFoundError("Unit not found", unit_id=str(unit_id))
            unit_number = unit.unit_number
            self.db.delete(unit)
            try:
                self.db.commit()
            except IntegrityError as exc:
                # Former tenants still point at the unit
                self.db.rollback()
                raise ConflictError(
                    f"Unit {unit_number} has tenant history and cannot be deleted",
                    unit_id=str(unit_id),
                    hint="Units with past tenants are kept for their statements",
                ) from exc

    # Statements and reports ---------------------------------------------------

    async def get_payment(self, payment_id: UUID) -> Optional[Dict[str, Any]]:
        with self._guard("load payment"):
            payment = self.db.get(Payment, payment_id)
            return _payment_to_dict(payment) if payment else None

    async def get_invoice(self, invoice_id: UUID) -> Optional[Dict[str, Any]]:
        with self._guard("load invoice"):
            invoice = self.db.get(Invoice, invoice_id)
            if not invoice:
                return None
            tenant = invoice.tenant
            unit = tenant.unit if tenant else None
            return {
                "id": str(invoice.id),
                "invoice_type": invoice.invoice_type,
                "amount": invoice.amount,
                "due_date": invoice.due_date,
                "created_at": invoice.created_at,
                "tenant_name": tenant.name if tenant else None,
                "unit_number": unit.unit_number if unit else None,
                "property_name": unit.property.name if unit and unit.property else None,
            }

    async def get_tenant(self, tenant_id: UUID) -> Optional[Dict[str, Any]]:
        with self._guard("load tenant"):
            tenant = self.db.get(Tenant, tenant_id)
            if not tenant:
                return None
            unit = tenant.unit
            return {
                "id": str(tenant.id),
                "name": tenant.name,
                "email": tenant.email,
                "phone": tenant.phone,
                "is_active": tenant.is_active,
                "unit_number": unit.unit_number if unit else None,
                "property_name": unit.property.name if unit and unit.property else None,
            }

    async def list_tenant_payments(self, tenant_id: UUID) -> List[Dict[str, Any]]:
        with self._guard("load tenant payments"):
            payments = (
                self.db.query(Payment)
                .filter(Payment.tenant_id == tenant_id)
                .order_by(Payment.payment_date.desc())
                .all()
            )
            return [_payment_to_dict(p) for p in payments]

    async def list_payments(
        self, start: date, end: date, property_id: Optional[UUID] = None
    ) -> List[Dict[str, Any]]:
        date_from, date_to = _day_bounds(start, end)
        with self._guard("load payments"):
            q = self.db.query(Payment).filter(
                Payment.payment_date >= date_from,
                Payment.payment_date <= date_to,
            )
            if property_id:
                q = q.filter(Payment.property_id == property_id)
            return [_payment_to_dict(p) for p in q.order_by(Payment.payment_date).all()]

    async def list_units_with_property(self, property_id: Optional[UUID] = None) -> List[Dict[str, Any]]:
        with self._guard("load units"):
            q = self.db.query(Unit).options(selectinload(Unit.tenants), joinedload(Unit.property))
            if property_id:
                q = q.filter(Unit.property_id == property_id)
            units = q.order_by(Unit.unit_number).all()
            rows = []
            for unit in units:
                tenant = unit.current_tenant
                rows.append({
                    "id": str(unit.id),
                    "unit_number": unit.unit_number,
                    "property_name": unit.property.name if unit.property else None,
                    "tenant_name": tenant.name if tenant else None,
                    "tenant_phone": tenant.phone if tenant else None,
                    "tenant_email": tenant.email if tenant else None,
                    "is_occupied": unit.is_occupied,
                })
            return rows

    async def list_utility_bills_between(
        self, start: date, end: date, property_id: Optional[UUID] = None
    ) -> List[UtilityBillRecord]:
        with self._guard("load utility bills"):
            q = (
                self.db.query(UtilityBill)
                .join(Unit, UtilityBill.unit_id == Unit.id)
                .options(
                    joinedload(UtilityBill.unit).selectinload(Unit.tenants),
                    joinedload(UtilityBill.unit).joinedload(Unit.property),
                )
                .filter(UtilityBill.billing_month >= start, UtilityBill.billing_month <= end)
            )
            if property_id:
                q = q.filter(Unit.property_id == property_id)
            bills = q.order_by(UtilityBill.billing_month, Unit.unit_number).all()
            return [_bill_record(b, b.unit) for b in bills]

    async def list_tenants(self, property_id: Optional[UUID] = None) -> List[Dict[str, Any]]:
        with self._guard("load tenants"):
            q = (
                self.db.query(Tenant)
                .join(Unit, Tenant.unit_id == Unit.id)
                .options(joinedload(Tenant.unit).joinedload(Unit.property), selectinload(Tenant.payments))
            )
            if property_id:
                q = q.filter(Unit.property_id == property_id)
            tenants = q.order_by(Tenant.name).all()
            return [
                {
                    "id": str(t.id),
                    "name": t.name,
                    "phone": t.phone,
                    "email": t.email,
                    "is_active": t.is_active,
                    "unit_number": t.unit.unit_number if t.unit else None,
                    "property_name": t.unit.property.name if t.unit and t.unit.property else None,
                    "payments": [
                        {"amount": p.amount, "status": p.status, "payment_date": p.payment_date}
                        for p in t.payments
                    ],
                }
                for t in tenants
            ]
