"""
Report Service
Builds the analytics report payloads consumed by the statement renderer and
the JSON report endpoints.

Each report is a dict of the form
    {"report_type", "title", "period", "summary": {...}, "details": [...]}
"""
import logging
from calendar import monthrange
from datetime import date
from typing import Any, Dict, Optional
from uuid import UUID

from estate_billing.core.exceptions import NotFoundError, ValidationError
from estate_billing.services.billing_periods import month_key, normalize_billing_period
from estate_billing.services.billing_repository import BillingRepository, call_with_timeout

logger = logging.getLogger(__name__)

REPORT_TITLES = {
    "financial": "Financial Summary",
    "occupancy": "Occupancy Report",
    "utility": "Utility Consumption Report",
    "tenants": "Tenant Report",
}


def _check_range(start: date, end: date) -> None:
    if start > end:
        raise ValidationError("Start date must be on or before end date", field="start")


class ReportService:

    def __init__(self, repo: BillingRepository):
        self.repo = repo

    async def financial(self, start: date, end: date, property_id: Optional[UUID] = None) -> Dict[str, Any]:
        _check_range(start, end)
        payments = await call_with_timeout(
            self.repo.list_payments(start, end, property_id), operation="load payments"
        )
        total_revenue = sum(float(p.get("amount") or 0) for p in payments)
        return {
            "report_type": "financial",
            "title": REPORT_TITLES["financial"],
            "period": f"{start.isoformat()} to {end.isoformat()}",
            "summary": {
                "total_revenue": total_revenue,
                "total_transactions": len(payments),
                "paid_payments": sum(1 for p in payments if p.get("status") == "paid"),
                "pending_payments": sum(1 for p in payments if p.get("status") == "pending"),
            },
            "details": payments,
        }

    async def occupancy(self, property_id: Optional[UUID] = None) -> Dict[str, Any]:
        units = await call_with_timeout(
            self.repo.list_units_with_property(property_id), operation="load units"
        )
        total = len(units)
        occupied = sum(1 for u in units if u.get("is_occupied"))
        return {
            "report_type": "occupancy",
            "title": REPORT_TITLES["occupancy"],
            "period": None,
            "summary": {
                "total_units": total,
                "occupied_units": occupied,
                "vacant_units": total - occupied,
                "occupancy_rate": (occupied / total * 100) if total else 0.0,
            },
            "details": units,
        }

    async def utility(self, start_month, end_month, property_id: Optional[UUID] = None) -> Dict[str, Any]:
        start = normalize_billing_period(start_month)
        first_of_end = normalize_billing_period(end_month)
        end = first_of_end.replace(day=monthrange(first_of_end.year, first_of_end.month)[1])
        _check_range(start, end)

        bills = await call_with_timeout(
            self.repo.list_utility_bills_between(start, end, property_id), operation="load utility bills"
        )
        total_consumption = sum(float(b.units_consumed or 0) for b in bills)
        return {
            "report_type": "utility",
            "title": REPORT_TITLES["utility"],
            "period": f"{month_key(start)} to {month_key(end)}",
            "summary": {
                "total_consumption": total_consumption,
                "total_amount": sum(float(b.total_amount or 0) for b in bills),
                "average_consumption": total_consumption / len(bills) if bills else 0.0,
            },
            "details": [
                {
                    "id": str(b.id),
                    "unit_id": str(b.unit_id),
                    "unit_number": b.unit_number,
                    "property_name": b.property_name,
                    "tenant_name": b.tenant_name,
                    "units_consumed": b.units_consumed,
                    "total_amount": b.total_amount,
                    "billing_month": b.billing_month,
                }
                for b in bills
            ],
        }

    async def tenants(self, property_id: Optional[UUID] = None) -> Dict[str, Any]:
        tenants = await call_with_timeout(self.repo.list_tenants(property_id), operation="load tenants")
        active = sum(1 for t in tenants if t.get("is_active") is not False)
        return {
            "report_type": "tenants",
            "title": REPORT_TITLES["tenants"],
            "period": None,
            "summary": {
                "total_tenants": len(tenants),
                "active_tenants": active,
                "inactive_tenants": len(tenants) - active,
            },
            "details": tenants,
        }

    async def tenant_statement(self, tenant_id: UUID) -> Dict[str, Any]:
        tenant = await call_with_timeout(self.repo.get_tenant(tenant_id), operation="load tenant")
        if tenant is None:
            raise NotFoundError("Tenant not found", tenant_id=str(tenant_id))
        payments = await call_with_timeout(
            self.repo.list_tenant_payments(tenant_id), operation="load tenant payments"
        )
        return {
            "tenant": tenant,
            "payments": payments,
            "total_paid": sum(float(p.get("amount") or 0) for p in payments),
            "total_payments": len(payments),
        }
