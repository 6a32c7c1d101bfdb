from pydantic import BaseModel, Field
from uuid import UUID
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union


class BillingSessionCreate(BaseModel):
    property_id: UUID
    billing_period: str = Field(..., description="Billing month, YYYY-MM or any date within the month")
    rate: Optional[float] = Field(None, ge=0)


class RateUpdate(BaseModel):
    rate: float = Field(..., ge=0)


class BillLineUpdate(BaseModel):
    # Empty string clears the current reading
    current_reading: Optional[Union[float, str]] = None
    arrears_bf: Optional[float] = Field(None, ge=0)
    previous_reading: Optional[float] = Field(None, ge=0)
    acknowledge_regression: bool = False


class BillLineResponse(BaseModel):
    unit_id: str
    unit_number: str
    tenant_name: str
    arrears_bf: float
    previous_reading: float
    current_reading: Optional[float] = None
    units_consumed: float
    rate: float
    total_amount: float
    bill_id: Optional[str] = None
    version: Optional[int] = None
    regressed: bool = False
    regression_acknowledged: bool = False


class BillingSessionResponse(BaseModel):
    session_id: str
    state: str
    mode: Optional[str] = None
    property_id: Optional[UUID] = None
    billing_period: Optional[date] = None
    rate: float
    lines: List[BillLineResponse] = []
    warnings: List[Dict[str, Any]] = []
    failed_unit_ids: List[str] = []
    error: Optional[Dict[str, Any]] = None
    total_units_consumed: float = 0
    total_amount: float = 0
    updated_at: datetime

    model_config = {"from_attributes": True}


class PersistedLineResponse(BaseModel):
    unit_id: str
    unit_number: str
    bill_id: Optional[str] = None
    version: Optional[int] = None


class FailedLineResponse(BaseModel):
    unit_id: str
    unit_number: str
    error: str
    detail: str


class SaveResponse(BaseModel):
    success: bool = True
    message: str
    succeeded: List[PersistedLineResponse] = []
    failed: List[FailedLineResponse] = []
    session: Optional[BillingSessionResponse] = None
