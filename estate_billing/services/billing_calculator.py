"""
Bill line computation - metered consumption and charge.

    units_consumed = max(0, current_reading - previous_reading)
    total_amount   = units_consumed * rate

A reading that goes backwards (meter replaced or misread) is clamped to zero
consumption and flagged as `regressed`; saving such a line is a separate
decision made by the billing session.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class BillComputation:
    units_consumed: float
    total_amount: float
    regressed: bool = False


def _as_number(value) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def compute(previous_reading, current_reading: Optional[float], rate) -> BillComputation:
    """Derive consumption and charge for one unit. Pure function."""
    previous = _as_number(previous_reading)
    if current_reading is None or current_reading == "":
        return BillComputation(units_consumed=0.0, total_amount=0.0)

    current = _as_number(current_reading)
    regressed = current < previous
    units_consumed = max(0.0, current - previous)

    # An unset rate is allowed while the session is being configured
    rate_value = _as_number(rate)
    total_amount = units_consumed * rate_value if rate_value > 0 else 0.0

    return BillComputation(
        units_consumed=units_consumed,
        total_amount=total_amount,
        regressed=regressed,
    )
