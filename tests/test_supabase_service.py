import uuid
from datetime import date
from types import SimpleNamespace

import httpx
import pytest
from postgrest.exceptions import APIError

from estate_billing.core.exceptions import (
    BillingError, ConflictError, NotFoundError, StaleWriteError, TransientFetchError, ValidationError,
)
from estate_billing.core.security import RequestContext
from estate_billing.services.billing_repository import UtilityBillRecord
from estate_billing.services.supabase_service import SupabaseBillingRepository

UNIT_ID = uuid.uuid4()
CLERK = RequestContext(user_id="user-1", email="clerk@example.com")


class FakeQuery:
    """Chainable stand-in for a PostgREST request builder"""

    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.calls = []

    def __getattr__(self, name):
        def _chain(*args, **kwargs):
            self.calls.append((name, args))
            return self
        return _chain

    async def execute(self):
        self.client.executed.append(self)
        outcome = self.client.responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(data=outcome)


class FakeClient:

    def __init__(self, *responses):
        self.responses = list(responses)
        self.executed = []

    def table(self, name):
        return FakeQuery(self, name)


def _repo(*responses):
    client = FakeClient(*responses)
    return SupabaseBillingRepository(client, CLERK), client


def _row(**overrides):
    row = {
        "id": str(uuid.uuid4()), "unit_id": str(UNIT_ID), "billing_month": "2025-03-01",
        "current_reading": 30, "previous_reading": 10, "units_consumed": 20, "rate": 15,
        "total_amount": 300, "arrears_bf": 0, "version": 1,
    }
    row.update(overrides)
    return row


def _record():
    return UtilityBillRecord(unit_id=UNIT_ID, billing_month=date(2025, 3, 1), current_reading=30, rate=15)


async def test_unique_violation_is_a_conflict():
    repo, _ = _repo(APIError({"code": "23505", "message": "duplicate key value"}))
    with pytest.raises(ConflictError) as exc:
        await repo.insert_utility_bill(_record())
    assert exc.value.details["unit_id"] == str(UNIT_ID)


@pytest.mark.parametrize("code", ["23502", "23503", "23514", "22P02"])
async def test_data_errors_are_validation_errors(code):
    repo, _ = _repo(APIError({"code": code, "message": "violates check constraint"}))
    with pytest.raises(ValidationError):
        await repo.insert_utility_bill(_record())


async def test_other_api_errors_stay_billing_errors():
    repo, _ = _repo(APIError({"code": "42501", "message": "permission denied"}))
    with pytest.raises(BillingError) as exc:
        await repo.list_properties()
    assert type(exc.value) is BillingError


async def test_network_failure_is_transient():
    repo, _ = _repo(httpx.ConnectError("connection refused"))
    with pytest.raises(TransientFetchError):
        await repo.list_units(uuid.uuid4())


async def test_insert_sends_actor_and_serialized_values():
    repo, client = _repo([_row()])
    saved = await repo.insert_utility_bill(_record())
    assert saved.units_consumed == 20
    name, args = client.executed[0].calls[0]
    assert name == "insert"
    assert args[0]["unit_id"] == str(UNIT_ID)
    assert args[0]["billing_month"] == "2025-03-01"
    assert args[0]["recorded_by"] == "clerk@example.com"


async def test_versioned_update_with_no_rows_is_stale():
    bill_id = uuid.uuid4()
    repo, client = _repo([], [{"id": str(bill_id)}])
    with pytest.raises(StaleWriteError):
        await repo.update_utility_bill(bill_id, {"current_reading": 40}, expected_version=1)
    assert ("eq", ("version", 1)) in client.executed[0].calls


async def test_update_of_missing_bill_is_not_found():
    repo, _ = _repo([], [])
    with pytest.raises(NotFoundError):
        await repo.update_utility_bill(uuid.uuid4(), {"current_reading": 40}, expected_version=1)


async def test_units_read_current_tenant_from_embed():
    repo, _ = _repo([{
        "id": str(UNIT_ID), "unit_number": "A1", "property_id": None,
        "tenants": [{"id": "t1", "name": "Former", "is_active": False}, {"id": "t2", "name": "Current"}],
    }])
    units = await repo.list_units(uuid.uuid4())
    assert units[0].tenant_name == "Current"


async def test_bills_carry_embedded_display_fields():
    repo, _ = _repo([_row(units={"unit_number": "A1", "tenants": [], "properties": {"name": "Greenview"}})])
    bills = await repo.list_utility_bills([UNIT_ID], date(2025, 3, 1))
    assert bills[0].unit_number == "A1"
    assert bills[0].property_name == "Greenview"
    assert bills[0].tenant_name is None
    assert bills[0].billing_month == date(2025, 3, 1)


async def test_unit_referenced_by_tenants_is_a_conflict():
    repo, _ = _repo(APIError({"code": "23503", "message": "violates foreign key constraint"}))
    with pytest.raises(ConflictError) as exc:
        await repo.delete_unit(UNIT_ID)
    assert "tenant history" in exc.value.message
