"""
Supabase Integration Service
Billing repository over the Supabase PostgREST API.

A client is created per request and authenticated with the caller's access
token, so row-level security policies apply to every query. The request
dependency closes it once the response is done.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions

from estate_billing.core.config import settings
from estate_billing.core.exceptions import (
    BillingError, ConflictError, NotFoundError, StaleWriteError, TransientFetchError, ValidationError,
)
from estate_billing.core.security import RequestContext
from estate_billing.services.billing_repository import (
    UPDATABLE_BILL_FIELDS, BillingRepository, TenantRef, UnitRecord, UtilityBillRecord,
)

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
# not_null, foreign_key, check, invalid text representation
DATA_ERRORS = {"23502", "23503", "23514", "22P02"}


async def create_supabase_client(context: RequestContext) -> AsyncClient:
    """Create a PostgREST-ready client acting as the caller"""
    if not settings.supabase_configured:
        raise TransientFetchError("Supabase is not configured", retryable=False)
    try:
        client = await acreate_client(
            settings.SUPABASE_URL,
            settings.SUPABASE_KEY,
            options=AsyncClientOptions(
                postgrest_client_timeout=settings.BILLING_REQUEST_TIMEOUT_SECONDS,
            ),
        )
    except Exception as e:
        logger.error(f"[SUPABASE] Failed to initialize client: {e}")
        raise TransientFetchError("Could not connect to Supabase") from e
    if context.access_token:
        client.postgrest.auth(context.access_token)
    return client


async def close_supabase_client(client: AsyncClient) -> None:
    """Close the HTTP session held by the client's PostgREST connection"""
    try:
        await client.postgrest.aclose()
    except httpx.HTTPError as e:
        logger.warning(f"[SUPABASE] Failed to close client: {e}")


def _parse_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _current_tenant(tenants) -> Optional[dict]:
    for tenant in tenants or []:
        if tenant.get("is_active", True) is not False:
            return tenant
    return None


def _one(value) -> Optional[dict]:
    """PostgREST embeds to-one relations as objects and to-many as lists"""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _bill_record(row: dict) -> UtilityBillRecord:
    record = UtilityBillRecord(
        id=UUID(str(row["id"])) if row.get("id") else None,
        unit_id=UUID(str(row["unit_id"])),
        billing_month=_parse_date(row["billing_month"]),
        arrears_bf=float(row.get("arrears_bf") or 0),
        previous_reading=float(row.get("previous_reading") or 0),
        current_reading=float(row.get("current_reading") or 0),
        units_consumed=float(row.get("units_consumed") or 0),
        rate=float(row.get("rate") or 0),
        total_amount=float(row.get("total_amount") or 0),
        version=int(row.get("version") or 1),
        created_at=_parse_datetime(row.get("created_at")),
    )
    unit = _one(row.get("units"))
    if unit:
        tenant = _current_tenant(unit.get("tenants"))
        prop = _one(unit.get("properties"))
        record.unit_number = unit.get("unit_number")
        record.tenant_name = tenant.get("name") if tenant else None
        record.property_name = prop.get("name") if prop else None
    return record


def _payment_to_dict(row: dict) -> dict:
    tenant = _one(row.get("tenants"))
    prop = _one(row.get("properties"))
    return {
        "id": str(row["id"]),
        "tenant_id": row.get("tenant_id"),
        "property_id": row.get("property_id"),
        "amount": float(row.get("amount") or 0),
        "payment_date": _parse_datetime(row.get("payment_date")),
        "payment_method": row.get("payment_method"),
        "status": row.get("status"),
        "payment_type": row.get("payment_type"),
        "reference": row.get("reference"),
        "notes": row.get("notes"),
        "tenant_name": tenant.get("name") if tenant else None,
        "property_name": prop.get("name") if prop else None,
    }


def _serialize(values: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in values.items():
        if isinstance(value, UUID):
            value = str(value)
        elif isinstance(value, (date, datetime)):
            value = value.isoformat()
        out[key] = value
    return out


class SupabaseBillingRepository(BillingRepository):
    """Billing repository backed by Supabase tables"""

    def __init__(self, client: AsyncClient, context: RequestContext):
        super().__init__(context)
        self.client = client

    async def _execute(self, query, operation: str):
        try:
            response = await query.execute()
        except APIError as exc:
            logger.error(f"[SUPABASE] {operation} failed: {exc.code} {exc.message}")
            if exc.code == UNIQUE_VIOLATION:
                raise ConflictError() from exc
            if exc.code in DATA_ERRORS:
                raise ValidationError(exc.message or f"Could not {operation}") from exc
            raise BillingError(f"Could not {operation}: {exc.message}", operation=operation) from exc
        except httpx.HTTPError as exc:
            logger.error(f"[SUPABASE] {operation} failed: {exc}")
            raise TransientFetchError(f"Could not {operation}", operation=operation) from exc
        return response.data or []

    # Billing ------------------------------------------------------------------

    async def list_properties(self) -> List[Dict[str, Any]]:
        rows = await self._execute(
            self.client.table("properties").select("id, name").order("name"),
            "load properties",
        )
        return [{"id": UUID(str(r["id"])), "name": r["name"]} for r in rows]

    async def get_property(self, property_id: UUID) -> Optional[Dict[str, Any]]:
        rows = await self._execute(
            self.client.table("properties").select("id, name, address").eq("id", str(property_id)).limit(1),
            "load property",
        )
        if not rows:
            return None
        return {"id": UUID(str(rows[0]["id"])), "name": rows[0]["name"], "address": rows[0].get("address")}

    def _unit_record(self, row: dict) -> UnitRecord:
        tenant = _current_tenant(row.get("tenants"))
        return UnitRecord(
            id=UUID(str(row["id"])),
            unit_number=row["unit_number"],
            property_id=row.get("property_id"),
            tenant=TenantRef(id=tenant["id"], name=tenant["name"]) if tenant else None,
        )

    async def list_units(self, property_id: UUID) -> List[UnitRecord]:
        rows = await self._execute(
            self.client.table("units")
            .select("id, unit_number, property_id, tenants(id, name, is_active)")
            .eq("property_id", str(property_id))
            .order("unit_number"),
            "load units",
        )
        return [self._unit_record(r) for r in rows]

    async def get_unit(self, unit_id: UUID) -> Optional[UnitRecord]:
        rows = await self._execute(
            self.client.table("units")
            .select("id, unit_number, property_id, tenants(id, name, is_active)")
            .eq("id", str(unit_id))
            .limit(1),
            "load unit",
        )
        return self._unit_record(rows[0]) if rows else None

    async def list_utility_bills(self, unit_ids: Sequence[UUID], period: date) -> List[UtilityBillRecord]:
        if not unit_ids:
            return []
        rows = await self._execute(
            self.client.table("utility_bills")
            .select("*, units(unit_number, tenants(name, is_active), properties(name))")
            .eq("billing_month", period.isoformat())
            .in_("unit_id", [str(u) for u in unit_ids]),
            "load utility bills",
        )
        records = [_bill_record(r) for r in rows]
        records.sort(key=lambda r: r.unit_number or "")
        return records

    async def latest_utility_bill_before(self, unit_id: UUID, period: date) -> Optional[UtilityBillRecord]:
        rows = await self._execute(
            self.client.table("utility_bills")
            .select("*")
            .eq("unit_id", str(unit_id))
            .lt("billing_month", period.isoformat())
            .order("billing_month", desc=True)
            .limit(1),
            "load previous reading",
        )
        return _bill_record(rows[0]) if rows else None

    async def insert_utility_bill(self, row: UtilityBillRecord) -> UtilityBillRecord:
        values = _serialize({**row.insert_values(), "version": 1, "recorded_by": self.context.actor})
        try:
            rows = await self._execute(self.client.table("utility_bills").insert(values), "save utility bill")
        except ConflictError as exc:
            raise ConflictError(unit_id=str(row.unit_id)) from exc
        logger.info(f"[SUPABASE] Inserted bill for unit {row.unit_id}")
        return _bill_record(rows[0])

    async def update_utility_bill(
        self,
        bill_id: UUID,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> UtilityBillRecord:
        values = {k: fields[k] for k in UPDATABLE_BILL_FIELDS if k in fields}
        values["recorded_by"] = self.context.actor
        query = self.client.table("utility_bills")
        if expected_version is not None:
            values["version"] = expected_version + 1
            rows = await self._execute(
                query.update(_serialize(values)).eq("id", str(bill_id)).eq("version", expected_version),
                "update utility bill",
            )
        else:
            rows = await self._execute(
                query.update(_serialize(values)).eq("id", str(bill_id)),
                "update utility bill",
            )

        if not rows:
            existing = await self._execute(
                self.client.table("utility_bills").select("id").eq("id", str(bill_id)).limit(1),
                "load utility bill",
            )
            if not existing:
                raise NotFoundError(f"Utility bill {bill_id} not found", bill_id=str(bill_id))
            raise StaleWriteError(bill_id=str(bill_id))
        return _bill_record(rows[0])

    # Units --------------------------------------------------------------------

    async def unit_has_bills(self, unit_id: UUID) -> bool:
        rows = await self._execute(
            self.client.table("utility_bills").select("id").eq("unit_id", str(unit_id)).limit(1),
            "check unit bills",
        )
        return bool(rows)

    async def delete_unit(self, unit_id: UUID) -> None:
        try:
            rows = await self._execute(
                self.client.table("units").delete().eq("id", str(unit_id)),
                "delete unit",
            )
        except ValidationError as exc:
            if getattr(exc.__cause__, "code", None) != FOREIGN_KEY_VIOLATION:
                raise
            raise ConflictError(
                "Unit has tenant history and cannot be deleted",
                unit_id=str(unit_id),
                hint="Units with past tenants are kept for their statements",
            ) from exc.__cause__
        if not rows:
            raise NotFoundError("Unit not found", unit_id=str(unit_id))

    # Statements and reports ---------------------------------------------------

    async def get_payment(self, payment_id: UUID) -> Optional[Dict[str, Any]]:
        rows = await self._execute(
            self.client.table("payments")
            .select("*, tenants(name), properties(name)")
            .eq("id", str(payment_id))
            .limit(1),
            "load payment",
        )
        return _payment_to_dict(rows[0]) if rows else None

    async def get_invoice(self, invoice_id: UUID) -> Optional[Dict[str, Any]]:
        rows = await self._execute(
            self.client.table("invoices")
            .select("*, tenants(name, units(unit_number, properties(name)))")
            .eq("id", str(invoice_id))
            .limit(1),
            "load invoice",
        )
        if not rows:
            return None
        row = rows[0]
        tenant = _one(row.get("tenants")) or {}
        unit = _one(tenant.get("units")) or {}
        prop = _one(unit.get("properties")) or {}
        return {
            "id": str(row["id"]),
            "invoice_type": row.get("invoice_type"),
            "amount": float(row.get("amount") or 0),
            "due_date": _parse_datetime(row.get("due_date")),
            "created_at": _parse_datetime(row.get("created_at")),
            "tenant_name": tenant.get("name"),
            "unit_number": unit.get("unit_number"),
            "property_name": prop.get("name"),
        }

    async def get_tenant(self, tenant_id: UUID) -> Optional[Dict[str, Any]]:
        rows = await self._execute(
            self.client.table("tenants")
            .select("id, name, email, phone, is_active, units(unit_number, properties(name))")
            .eq("id", str(tenant_id))
            .limit(1),
            "load tenant",
        )
        if not rows:
            return None
        row = rows[0]
        unit = _one(row.get("units")) or {}
        prop = _one(unit.get("properties")) or {}
        return {
            "id": str(row["id"]),
            "name": row.get("name"),
            "email": row.get("email"),
            "phone": row.get("phone"),
            "is_active": row.get("is_active", True),
            "unit_number": unit.get("unit_number"),
            "property_name": prop.get("name"),
        }

    async def list_tenant_payments(self, tenant_id: UUID) -> List[Dict[str, Any]]:
        rows = await self._execute(
            self.client.table("payments")
            .select("*")
            .eq("tenant_id", str(tenant_id))
            .order("payment_date", desc=True),
            "load tenant payments",
        )
        return [_payment_to_dict(r) for r in rows]

    async def list_payments(
        self, start: date, end: date, property_id: Optional[UUID] = None
    ) -> List[Dict[str, Any]]:
        query = (
            self.client.table("payments")
            .select("*, tenants(name), properties(name)")
            .gte("payment_date", start.isoformat())
            .lte("payment_date", f"{end.isoformat()}T23:59:59")
        )
        if property_id:
            query = query.eq("property_id", str(property_id))
        rows = await self._execute(query.order("payment_date"), "load payments")
        return [_payment_to_dict(r) for r in rows]

    async def list_units_with_property(self, property_id: Optional[UUID] = None) -> List[Dict[str, Any]]:
        query = self.client.table("units").select(
            "id, unit_number, property_id, properties(name), tenants(name, phone, email, is_active)"
        )
        if property_id:
            query = query.eq("property_id", str(property_id))
        rows = await self._execute(query.order("unit_number"), "load units")
        result = []
        for row in rows:
            tenant = _current_tenant(row.get("tenants"))
            prop = _one(row.get("properties"))
            result.append({
                "id": str(row["id"]),
                "unit_number": row["unit_number"],
                "property_name": prop.get("name") if prop else None,
                "tenant_name": tenant.get("name") if tenant else None,
                "tenant_phone": tenant.get("phone") if tenant else None,
                "tenant_email": tenant.get("email") if tenant else None,
                "is_occupied": tenant is not None,
            })
        return result

    async def list_utility_bills_between(
        self, start: date, end: date, property_id: Optional[UUID] = None
    ) -> List[UtilityBillRecord]:
        query = (
            self.client.table("utility_bills")
            .select("*, units!inner(unit_number, property_id, properties(name), tenants(name, is_active))")
            .gte("billing_month", start.isoformat())
            .lte("billing_month", end.isoformat())
        )
        if property_id:
            query = query.eq("units.property_id", str(property_id))
        rows = await self._execute(query.order("billing_month"), "load utility bills")
        return [_bill_record(r) for r in rows]

    async def list_tenants(self, property_id: Optional[UUID] = None) -> List[Dict[str, Any]]:
        query = self.client.table("tenants").select(
            "*, units!inner(unit_number, property_id, properties(name)), payments(amount, status, payment_date)"
        )
        if property_id:
            query = query.eq("units.property_id", str(property_id))
        rows = await self._execute(query.order("name"), "load tenants")
        result = []
        for row in rows:
            unit = _one(row.get("units")) or {}
            prop = _one(unit.get("properties")) or {}
            result.append({
                "id": str(row["id"]),
                "name": row.get("name"),
                "phone": row.get("phone"),
                "email": row.get("email"),
                "is_active": row.get("is_active", True),
                "unit_number": unit.get("unit_number"),
                "property_name": prop.get("name"),
                "payments": [
                    {
                        "amount": float(p.get("amount") or 0),
                        "status": p.get("status"),
                        "payment_date": _parse_datetime(p.get("payment_date")),
                    }
                    for p in row.get("payments") or []
                ],
            })
        return result
