from fastapi import APIRouter, Depends, status
from typing import List
from uuid import UUID
import logging

from estate_billing.core.deps import get_billing_repository
from estate_billing.core.exceptions import ConflictError, NotFoundError
from estate_billing.schemas.property import PropertySummary, UnitResponse
from estate_billing.services.billing_repository import BillingRepository, call_with_timeout

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=List[PropertySummary])
async def list_properties(repo: BillingRepository = Depends(get_billing_repository)):
    """Properties available for billing"""
    return await call_with_timeout(repo.list_properties(), operation="load properties")


@router.get("/{property_id}/units", response_model=List[UnitResponse])
async def list_units(property_id: UUID, repo: BillingRepository = Depends(get_billing_repository)):
    """Units of a property with their current tenant"""
    units = await call_with_timeout(repo.list_units(property_id), operation="load units")
    return [
        UnitResponse(
            id=u.id,
            unit_number=u.unit_number,
            property_id=u.property_id,
            tenant_id=u.tenant.id if u.tenant else None,
            tenant_name=u.tenant_name,
            is_occupied=u.is_occupied,
        )
        for u in units
    ]


@router.delete("/units/{unit_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_unit(unit_id: UUID, repo: BillingRepository = Depends(get_billing_repository)):
    """Delete a unit that has no tenant and no bills"""
    unit = await call_with_timeout(repo.get_unit(unit_id), operation="load unit")
    if unit is None:
        raise NotFoundError("Unit not found", unit_id=str(unit_id))
    if unit.is_occupied:
        raise ConflictError(
            f"Unit {unit.unit_number} is occupied and cannot be deleted",
            hint="Move the tenant out first",
        )
    if await call_with_timeout(repo.unit_has_bills(unit_id), operation="check unit bills"):
        raise ConflictError(
            f"Unit {unit.unit_number} has utility bills and cannot be deleted",
            hint="Billed units are kept for the billing history",
        )

    await call_with_timeout(repo.delete_unit(unit_id), operation="delete unit")
    logger.info(f"Unit {unit.unit_number} deleted by {repo.context.actor}")
