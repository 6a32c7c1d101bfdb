from fastapi import APIRouter, Depends, Query
from datetime import date
from typing import Optional
from uuid import UUID

from estate_billing.api.routes.statements import pdf_response
from estate_billing.core.deps import get_report_service
from estate_billing.schemas.statement import ReportResponse
from estate_billing.services.billing_periods import month_key
from estate_billing.services.report_service import ReportService
from estate_billing.services.statement_renderer import StatementKind

router = APIRouter()


def _month_start() -> date:
    return date.today().replace(day=1)


async def _financial(reports: ReportService, start, end, property_id):
    return await reports.financial(start or _month_start(), end or date.today(), property_id)


async def _utility(reports: ReportService, start_month, end_month, property_id):
    current = month_key(date.today())
    return await reports.utility(start_month or current, end_month or current, property_id)


@router.get("/financial", response_model=ReportResponse)
async def financial_report(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    property_id: Optional[UUID] = Query(None),
    reports: ReportService = Depends(get_report_service),
):
    """Payments received within a date range (defaults to this month)"""
    return await _financial(reports, start, end, property_id)


@router.get("/financial/pdf")
async def financial_report_pdf(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    property_id: Optional[UUID] = Query(None),
    reports: ReportService = Depends(get_report_service),
):
    return pdf_response(StatementKind.ANALYTICS_REPORT, await _financial(reports, start, end, property_id))


@router.get("/occupancy", response_model=ReportResponse)
async def occupancy_report(
    property_id: Optional[UUID] = Query(None),
    reports: ReportService = Depends(get_report_service),
):
    """Occupied and vacant units"""
    return await reports.occupancy(property_id)


@router.get("/occupancy/pdf")
async def occupancy_report_pdf(
    property_id: Optional[UUID] = Query(None),
    reports: ReportService = Depends(get_report_service),
):
    return pdf_response(StatementKind.ANALYTICS_REPORT, await reports.occupancy(property_id))


@router.get("/utility", response_model=ReportResponse)
async def utility_report(
    start_month: Optional[str] = Query(None, description="YYYY-MM"),
    end_month: Optional[str] = Query(None, description="YYYY-MM"),
    property_id: Optional[UUID] = Query(None),
    reports: ReportService = Depends(get_report_service),
):
    """Metered consumption and charges per billing month range"""
    return await _utility(reports, start_month, end_month, property_id)


@router.get("/utility/pdf")
async def utility_report_pdf(
    start_month: Optional[str] = Query(None, description="YYYY-MM"),
    end_month: Optional[str] = Query(None, description="YYYY-MM"),
    property_id: Optional[UUID] = Query(None),
    reports: ReportService = Depends(get_report_service),
):
    return pdf_response(StatementKind.ANALYTICS_REPORT, await _utility(reports, start_month, end_month, property_id))


@router.get("/tenants", response_model=ReportResponse)
async def tenants_report(
    property_id: Optional[UUID] = Query(None),
    reports: ReportService = Depends(get_report_service),
):
    """Active and inactive tenants"""
    return await reports.tenants(property_id)


@router.get("/tenants/pdf")
async def tenants_report_pdf(
    property_id: Optional[UUID] = Query(None),
    reports: ReportService = Depends(get_report_service),
):
    return pdf_response(StatementKind.ANALYTICS_REPORT, await reports.tenants(property_id))
