"""
Statement Renderer
Lays out utility bills, invoices, receipts, tenant statements and analytics
reports and draws them as PDF documents with reportlab.

build_layout() is a pure function from a payload to a StatementLayout, and
render() draws that layout. Business values (consumption, charges, report
figures) are taken from the payload as given; only presentation totals such
as column sums are added up here.
"""
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from estate_billing.core.config import settings
from estate_billing.services.billing_periods import month_key, normalize_billing_period, period_label

logger = logging.getLogger(__name__)

UNKNOWN_TENANT = "Unknown Tenant"
UNKNOWN_PROPERTY = "Unknown Property"
NOT_AVAILABLE = "N/A"

REPORT_COLUMNS = {
    "financial": ["#", "Tenant", "Property", "Amount", "Status", "Date"],
    "occupancy": ["#", "Unit", "Property", "Tenant", "Status"],
    "utility": ["#", "Unit", "Property", "Units Used", "Amount", "Billing Month"],
    "tenants": ["#", "Name", "Phone", "Email", "Unit", "Property", "Status"],
}


class StatementKind(str, Enum):
    UTILITY_BILL_BATCH = "utility_bill_batch"
    UTILITY_BILL_SINGLE = "utility_bill_single"
    INVOICE = "invoice"
    PAYMENT_RECEIPT = "payment_receipt"
    TENANT_STATEMENT = "tenant_statement"
    ANALYTICS_REPORT = "analytics_report"


@dataclass
class StatementLayout:
    title: str
    header_lines: List[str] = field(default_factory=list)
    info_lines: List[str] = field(default_factory=list)
    details: List[Tuple[str, str]] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    rows: List[List[str]] = field(default_factory=list)
    summary_lines: List[str] = field(default_factory=list)
    footer_lines: List[str] = field(default_factory=list)
    watermark: Optional[str] = None


# ── Formatting ────────────────────────────────────────────────────────────────

def _number(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def format_currency(value) -> str:
    return f"{settings.CURRENCY_CODE} {_number(value):,.2f}"


def format_reading(value) -> str:
    return f"{_number(value):.2f}"


def format_date(value) -> str:
    if value in (None, ""):
        return NOT_AVAILABLE
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value.strftime(settings.DATE_FORMAT)


def _text(value, placeholder: str = NOT_AVAILABLE) -> str:
    if value is None or str(value).strip() == "":
        return placeholder
    return str(value)


def _safe_name(value: str) -> str:
    """Strip characters that break file names or the Content-Disposition header"""
    value = value.encode("ascii", "ignore").decode("ascii")
    return re.sub(r'[\\/:*?"<>|]+', "-", value).strip() or NOT_AVAILABLE


def receipt_number(payment_id) -> str:
    return "R" + str(payment_id)[-3:].rjust(3, "0")


def short_invoice_id(invoice_id) -> str:
    return str(invoice_id)[-4:]


def _business_header() -> List[str]:
    return [settings.BUSINESS_NAME, settings.BUSINESS_ADDRESS, settings.BUSINESS_CONTACT]


def _generated_line(generated_at: datetime) -> str:
    return f"Generated: {format_date(generated_at)}"


def _period(payload: Dict[str, Any]) -> date:
    return normalize_billing_period(payload["billing_period"])


# ── Layouts ───────────────────────────────────────────────────────────────────

def _utility_bill_batch(payload: Dict[str, Any], generated_at: datetime) -> StatementLayout:
    property_name = _text(payload.get("property_name"), UNKNOWN_PROPERTY)
    lines = payload.get("lines") or []
    rate = payload.get("rate")

    rows = []
    for index, line in enumerate(lines, start=1):
        rows.append([
            str(index),
            _text(line.get("unit_number")),
            _text(line.get("tenant_name"), UNKNOWN_TENANT),
            format_currency(line.get("arrears_bf")),
            format_reading(line.get("previous_reading")),
            format_reading(line.get("current_reading")),
            format_reading(line.get("units_consumed")),
            format_currency(line.get("rate", rate)),
            format_currency(line.get("total_amount")),
        ])

    total_units = sum(_number(line.get("units_consumed")) for line in lines)
    total_amount = sum(_number(line.get("total_amount")) for line in lines)
    return StatementLayout(
        title=f"UTILITY BILLING STATEMENT - {property_name}",
        header_lines=_business_header(),
        info_lines=[
            f"Billing Period: {period_label(_period(payload))}",
            f"Rate: {format_currency(rate)} per unit",
            _generated_line(generated_at),
        ],
        columns=[
            "#", "Unit No.", "Tenant", "Arrears B/F", "Prev Reading",
            "Curr Reading", "Units Used", "Rate", "Total Amount",
        ],
        rows=rows,
        summary_lines=[
            f"Total Units Consumed: {format_reading(total_units)}",
            f"Total Amount: {format_currency(total_amount)}",
        ],
        footer_lines=[f"Generated by {settings.SYSTEM_NAME}"],
    )


def _utility_bill_single(payload: Dict[str, Any], generated_at: datetime) -> StatementLayout:
    line = payload.get("line") or {}
    rate = line.get("rate", payload.get("rate"))
    arrears = _number(line.get("arrears_bf"))
    charge = _number(line.get("total_amount"))
    return StatementLayout(
        title="UTILITY BILL",
        header_lines=_business_header(),
        info_lines=[
            f"Property: {_text(payload.get('property_name'), UNKNOWN_PROPERTY)}",
            f"Unit: {_text(line.get('unit_number'))}",
            f"Tenant: {_text(line.get('tenant_name'), UNKNOWN_TENANT)}",
            f"Billing Period: {period_label(_period(payload))}",
        ],
        details=[
            ("Arrears Brought Forward:", format_currency(arrears)),
            ("Previous Reading:", f"{format_reading(line.get('previous_reading'))} units"),
            ("Current Reading:", f"{format_reading(line.get('current_reading'))} units"),
            ("Units Consumed:", f"{format_reading(line.get('units_consumed'))} units"),
            ("Rate:", f"{format_currency(rate)} per unit"),
            ("Current Charge:", format_currency(charge)),
            ("Total Amount Due:", format_currency(arrears + charge)),
        ],
        footer_lines=[
            "Thank you for your business",
            f"Generated by {settings.SYSTEM_NAME}",
            _generated_line(generated_at),
        ],
    )


def _invoice(payload: Dict[str, Any], generated_at: datetime) -> StatementLayout:
    due_date = payload.get("due_date")
    return StatementLayout(
        title="INVOICE",
        header_lines=_business_header(),
        info_lines=[
            "Billed To:",
            _text(payload.get("tenant_name"), UNKNOWN_TENANT),
            f"Unit: {_text(payload.get('unit_number'))}",
            f"Property: {_text(payload.get('property_name'), UNKNOWN_PROPERTY)}",
        ],
        columns=["Invoice ID", "Type", "Amount", "Due Date", "Created At"],
        rows=[[
            short_invoice_id(payload.get("id", "")),
            _text(payload.get("invoice_type")),
            format_currency(payload.get("amount")),
            format_date(due_date),
            format_date(payload.get("created_at")),
        ]],
        footer_lines=["Thank you for your business!", f"Generated on: {format_date(generated_at)}"],
    )


def _payment_receipt(payload: Dict[str, Any], generated_at: datetime) -> StatementLayout:
    return StatementLayout(
        title=f"Receipt #{receipt_number(payload.get('id', ''))}",
        header_lines=_business_header(),
        info_lines=[f"Date: {format_date(generated_at)}"],
        details=[
            ("Tenant:", _text(payload.get("tenant_name"), UNKNOWN_TENANT)),
            ("Property:", _text(payload.get("property_name"), UNKNOWN_PROPERTY)),
            ("Amount:", format_currency(payload.get("amount"))),
            ("Payment Date:", format_date(payload.get("payment_date"))),
            ("Method:", _text(payload.get("payment_method"))),
            ("Status:", _text(payload.get("status"))),
            ("Notes:", _text(payload.get("notes"))),
        ],
        summary_lines=[f"Total: {format_currency(payload.get('amount'))}"],
        footer_lines=["Thank you for your business!"],
        watermark="ORIGINAL",
    )


def _tenant_statement(payload: Dict[str, Any], generated_at: datetime) -> StatementLayout:
    tenant = payload.get("tenant") or {}
    payments = payload.get("payments") or []
    total_paid = payload.get("total_paid")
    if total_paid is None:
        total_paid = sum(_number(p.get("amount")) for p in payments)
    return StatementLayout(
        title="Tenant Statement",
        header_lines=_business_header(),
        info_lines=[
            f"Tenant: {_text(tenant.get('name'), UNKNOWN_TENANT)}",
            f"Phone: {_text(tenant.get('phone'))}",
            f"Email: {_text(tenant.get('email'))}",
            f"Unit: {_text(tenant.get('unit_number'))}",
            f"Property: {_text(tenant.get('property_name'), UNKNOWN_PROPERTY)}",
            _generated_line(generated_at),
        ],
        columns=["Date", "Amount", "Payment Method", "Reference", "Status", "Notes"],
        rows=[
            [
                format_date(p.get("payment_date")),
                format_currency(p.get("amount")),
                _text(p.get("payment_method")),
                _text(p.get("reference")),
                _text(p.get("status")),
                _text(p.get("notes")),
            ]
            for p in payments
        ],
        summary_lines=[
            f"Total Paid: {format_currency(total_paid)}",
            f"Total Payments: {len(payments)}",
        ],
        footer_lines=[f"Generated by {settings.SYSTEM_NAME}"],
    )


def _summary_value(key: str, value) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if "revenue" in key or "amount" in key:
            return format_currency(value)
        if key.endswith("rate"):
            return f"{value:.1f}%"
        if isinstance(value, float):
            return f"{value:,.2f}"
    return _text(value)


def _report_row(report_type: str, index: int, item: Dict[str, Any]) -> List[str]:
    if report_type == "financial":
        return [
            str(index), _text(item.get("tenant_name")), _text(item.get("property_name")),
            format_currency(item.get("amount")), _text(item.get("status")),
            format_date(item.get("payment_date")),
        ]
    if report_type == "occupancy":
        occupied = item.get("is_occupied")
        return [
            str(index), _text(item.get("unit_number")), _text(item.get("property_name")),
            _text(item.get("tenant_name"), "Vacant"), "Occupied" if occupied else "Vacant",
        ]
    if report_type == "utility":
        billing_month = item.get("billing_month")
        return [
            str(index), _text(item.get("unit_number")), _text(item.get("property_name")),
            format_reading(item.get("units_consumed")), format_currency(item.get("total_amount")),
            month_key(billing_month) if isinstance(billing_month, date) else _text(billing_month),
        ]
    return [
        str(index), _text(item.get("name")), _text(item.get("phone")), _text(item.get("email")),
        _text(item.get("unit_number")), _text(item.get("property_name")),
        "Inactive" if item.get("is_active") is False else "Active",
    ]


def _analytics_report(payload: Dict[str, Any], generated_at: datetime) -> StatementLayout:
    report_type = payload.get("report_type", "tenants")
    info = [_generated_line(generated_at)]
    if payload.get("period"):
        info.append(f"Period: {payload['period']}")
    summary = payload.get("summary") or {}
    return StatementLayout(
        title=f"{payload.get('title', 'Report')} - {settings.SYSTEM_NAME}",
        info_lines=info,
        details=[
            (key.replace("_", " ").title(), _summary_value(key, value))
            for key, value in summary.items()
        ],
        columns=REPORT_COLUMNS.get(report_type, REPORT_COLUMNS["tenants"]),
        rows=[
            _report_row(report_type, index, item)
            for index, item in enumerate(payload.get("details") or [], start=1)
        ],
    )


LAYOUTS = {
    StatementKind.UTILITY_BILL_BATCH: _utility_bill_batch,
    StatementKind.UTILITY_BILL_SINGLE: _utility_bill_single,
    StatementKind.INVOICE: _invoice,
    StatementKind.PAYMENT_RECEIPT: _payment_receipt,
    StatementKind.TENANT_STATEMENT: _tenant_statement,
    StatementKind.ANALYTICS_REPORT: _analytics_report,
}


def build_layout(kind, payload: Dict[str, Any], generated_at: Optional[datetime] = None) -> StatementLayout:
    """Lay out a statement without drawing it"""
    kind = StatementKind(kind)
    return LAYOUTS[kind](payload, generated_at or datetime.now(timezone.utc))


def filename_for(kind, payload: Dict[str, Any], generated_at: Optional[datetime] = None) -> str:
    kind = StatementKind(kind)
    today = (generated_at or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    if kind == StatementKind.UTILITY_BILL_BATCH:
        name = _safe_name(_text(payload.get("property_name"), UNKNOWN_PROPERTY))
        return f"utility-bills-{name}-{month_key(_period(payload))}.pdf"
    if kind == StatementKind.UTILITY_BILL_SINGLE:
        unit_number = _safe_name(_text((payload.get("line") or {}).get("unit_number")))
        return f"utility-bill-unit-{unit_number}-{month_key(_period(payload))}.pdf"
    if kind == StatementKind.PAYMENT_RECEIPT:
        return f"receipt_{receipt_number(payload.get('id', ''))}.pdf"
    if kind == StatementKind.INVOICE:
        return f"invoice_{short_invoice_id(payload.get('id', ''))}.pdf"
    if kind == StatementKind.TENANT_STATEMENT:
        name = _safe_name(_text((payload.get("tenant") or {}).get("name"), UNKNOWN_TENANT))
        return f"tenant-statement-{name}-{today}.pdf"
    title = re.sub(r"\s+", "_", payload.get("title", "Report"))
    return f"{title}_{today}.pdf"


# ── Drawing ───────────────────────────────────────────────────────────────────

BLUE = colors.HexColor("#1a56db")
LIGHT_GREY = colors.HexColor("#f3f4f6")


def _table(data: Sequence[Sequence[str]], header: bool = True, col_widths=None) -> Table:
    t = Table(data, colWidths=col_widths, repeatRows=1 if header else 0)
    style = [
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("GRID", (0, 0), (-1, -1), 0.3, colors.HexColor("#d1d5db")),
        ("LEFTPADDING", (0, 0), (-1, -1), 4),
        ("RIGHTPADDING", (0, 0), (-1, -1), 4),
        ("TOPPADDING", (0, 0), (-1, -1), 3),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
    ]
    if header:
        style += [
            ("BACKGROUND", (0, 0), (-1, 0), BLUE),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, LIGHT_GREY]),
        ]
    t.setStyle(TableStyle(style))
    return t


def _draw_watermark(text: str):
    def _on_page(canvas, doc):
        width, height = doc.pagesize
        canvas.saveState()
        canvas.setFont("Helvetica-Bold", 60)
        canvas.setFillColor(colors.HexColor("#e5e7eb"))
        canvas.drawCentredString(width / 2, height / 2, text)
        canvas.restoreState()
    return _on_page


def draw(layout: StatementLayout) -> bytes:
    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf, pagesize=A4,
        topMargin=1.5 * cm, bottomMargin=1.5 * cm,
        leftMargin=1.5 * cm, rightMargin=1.5 * cm,
        title=layout.title,
    )
    styles = getSampleStyleSheet()
    centered = ParagraphStyle("centered", parent=styles["Normal"], alignment=TA_CENTER, fontSize=9)
    title_style = ParagraphStyle(
        "title", parent=styles["Heading1"], alignment=TA_CENTER, textColor=BLUE, fontSize=16, spaceAfter=6,
    )
    small_style = ParagraphStyle("small", parent=centered, textColor=colors.grey, fontSize=8)

    story = []
    if layout.header_lines:
        story.append(Paragraph(f"<b>{escape(layout.header_lines[0])}</b>", centered))
        story.extend(Paragraph(escape(line), centered) for line in layout.header_lines[1:])
        story.append(Spacer(1, 0.4 * cm))
    story.append(Paragraph(escape(layout.title), title_style))
    story.extend(Paragraph(escape(line), styles["Normal"]) for line in layout.info_lines)
    story.append(Spacer(1, 0.4 * cm))

    if layout.details:
        story.append(_table([list(pair) for pair in layout.details], header=False, col_widths=[7 * cm, 8 * cm]))
        story.append(Spacer(1, 0.4 * cm))
    if layout.columns:
        story.append(_table([layout.columns] + layout.rows))
        story.append(Spacer(1, 0.4 * cm))

    story.extend(Paragraph(f"<b>{escape(line)}</b>", styles["Normal"]) for line in layout.summary_lines)
    if layout.footer_lines:
        story.append(Spacer(1, 0.8 * cm))
        story.extend(Paragraph(escape(line), small_style) for line in layout.footer_lines)

    if layout.watermark:
        on_page = _draw_watermark(layout.watermark)
        doc.build(story, onFirstPage=on_page, onLaterPages=on_page)
    else:
        doc.build(story)
    return buf.getvalue()


def render(kind, payload: Dict[str, Any], generated_at: Optional[datetime] = None) -> bytes:
    """Render a statement to PDF bytes"""
    layout = build_layout(kind, payload, generated_at)
    pdf = draw(layout)
    logger.info(f"[PDF] Rendered {StatementKind(kind).value} ({len(pdf)} bytes)")
    return pdf
