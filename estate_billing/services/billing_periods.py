"""
Billing period helpers.

A billing period is a calendar month identified by its first day. Whatever
the caller sends ("2025-03", "2025-03-17", a date or a datetime) is folded to
YYYY-MM-01 before it is used as part of a bill's identity.
"""
from datetime import date, datetime
from typing import Union

from estate_billing.core.exceptions import ValidationError

PeriodInput = Union[str, date, datetime]


def normalize_billing_period(value: PeriodInput) -> date:
    """Return the first day of the month *value* falls in."""
    if value is None or value == "":
        raise ValidationError("Please select billing month", field="billing_period")

    if isinstance(value, datetime):
        return date(value.year, value.month, 1)
    if isinstance(value, date):
        return value.replace(day=1)

    text = str(value).strip()
    for candidate, fmt in ((text, "%Y-%m"), (text[:10], "%Y-%m-%d")):
        try:
            parsed = datetime.strptime(candidate, fmt)
        except ValueError:
            continue
        return date(parsed.year, parsed.month, 1)
    raise ValidationError(f"Invalid billing month '{text}', expected YYYY-MM", field="billing_period")


def add_months(period: date, months: int) -> date:
    index = period.year * 12 + (period.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def month_key(period: date) -> str:
    """'2025-03' style key used in file names."""
    return period.strftime("%Y-%m")


def period_label(period: date) -> str:
    """'March 2025' style label used on statements."""
    return period.strftime("%B %Y")
