from pydantic import BaseModel
from uuid import UUID
from typing import Optional


class PropertySummary(BaseModel):
    id: UUID
    name: str


class UnitResponse(BaseModel):
    id: UUID
    unit_number: str
    property_id: Optional[UUID] = None
    tenant_id: Optional[UUID] = None
    tenant_name: str
    is_occupied: bool
