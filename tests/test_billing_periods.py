from datetime import date, datetime

import pytest

from estate_billing.core.exceptions import ValidationError
from estate_billing.services.billing_periods import add_months, month_key, normalize_billing_period, period_label


@pytest.mark.parametrize("value", ["2025-03", "2025-03-01", "2025-03-17", "2025-03-17T08:30:00Z",
                                   date(2025, 3, 31), datetime(2025, 3, 9, 14, 0)])
def test_any_day_of_the_month_folds_to_the_first(value):
    assert normalize_billing_period(value) == date(2025, 3, 1)


@pytest.mark.parametrize("value", [None, ""])
def test_missing_period_asks_for_a_month(value):
    with pytest.raises(ValidationError) as exc:
        normalize_billing_period(value)
    assert exc.value.message == "Please select billing month"
    assert exc.value.field == "billing_period"


@pytest.mark.parametrize("value", ["March", "2025-13", "03/2025"])
def test_unparseable_period_is_rejected(value):
    with pytest.raises(ValidationError):
        normalize_billing_period(value)


def test_add_months_crosses_years():
    assert add_months(date(2024, 12, 1), 1) == date(2025, 1, 1)
    assert add_months(date(2025, 1, 1), -1) == date(2024, 12, 1)


def test_labels():
    assert month_key(date(2025, 3, 1)) == "2025-03"
    assert period_label(date(2025, 3, 1)) == "March 2025"
