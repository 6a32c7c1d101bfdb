from pydantic import BaseModel
from datetime import datetime
from typing import Any, Dict, List, Optional


class PaymentLine(BaseModel):
    id: str
    amount: float
    payment_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    status: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


class TenantInfo(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    is_active: Optional[bool] = True
    unit_number: Optional[str] = None
    property_name: Optional[str] = None


class TenantStatementResponse(BaseModel):
    tenant: TenantInfo
    payments: List[PaymentLine] = []
    total_paid: float
    total_payments: int


class ReportResponse(BaseModel):
    report_type: str
    title: str
    period: Optional[str] = None
    summary: Dict[str, Any]
    details: List[Dict[str, Any]] = []
