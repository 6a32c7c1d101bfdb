from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from uuid import UUID
import io
import logging

from estate_billing.core.deps import get_billing_repository, get_report_service
from estate_billing.core.exceptions import NotFoundError
from estate_billing.schemas.statement import TenantStatementResponse
from estate_billing.services import statement_renderer
from estate_billing.services.billing_repository import BillingRepository, call_with_timeout
from estate_billing.services.report_service import ReportService
from estate_billing.services.statement_renderer import StatementKind

logger = logging.getLogger(__name__)

router = APIRouter()


def pdf_response(kind: StatementKind, payload: dict) -> StreamingResponse:
    """Render a statement and stream it as a download"""
    pdf = statement_renderer.render(kind, payload)
    filename = statement_renderer.filename_for(kind, payload)
    return StreamingResponse(
        io.BytesIO(pdf),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/receipts/{payment_id}.pdf")
async def payment_receipt(payment_id: UUID, repo: BillingRepository = Depends(get_billing_repository)):
    """Payment receipt"""
    payment = await call_with_timeout(repo.get_payment(payment_id), operation="load payment")
    if payment is None:
        raise NotFoundError("Payment not found", payment_id=str(payment_id))
    return pdf_response(StatementKind.PAYMENT_RECEIPT, payment)


@router.get("/invoices/{invoice_id}.pdf")
async def invoice(invoice_id: UUID, repo: BillingRepository = Depends(get_billing_repository)):
    """Invoice addressed to the tenant"""
    record = await call_with_timeout(repo.get_invoice(invoice_id), operation="load invoice")
    if record is None:
        raise NotFoundError("Invoice not found", invoice_id=str(invoice_id))
    return pdf_response(StatementKind.INVOICE, record)


# Registered before the JSON route so ".pdf" is not read as part of the id
@router.get("/tenants/{tenant_id}.pdf")
async def tenant_statement_pdf(tenant_id: UUID, reports: ReportService = Depends(get_report_service)):
    """Tenant payment statement as PDF"""
    statement = await reports.tenant_statement(tenant_id)
    return pdf_response(StatementKind.TENANT_STATEMENT, statement)


@router.get("/tenants/{tenant_id}", response_model=TenantStatementResponse)
async def tenant_statement(tenant_id: UUID, reports: ReportService = Depends(get_report_service)):
    """Tenant details with payment history and total paid"""
    return await reports.tenant_statement(tenant_id)
