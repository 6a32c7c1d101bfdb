from types import SimpleNamespace

import pytest

from estate_billing.core import deps
from estate_billing.core.config import settings
from estate_billing.core.security import RequestContext
from estate_billing.services.sql_billing_repository import SqlBillingRepository
from estate_billing.services.supabase_service import SupabaseBillingRepository, close_supabase_client

CLERK = RequestContext(user_id="user-1", email="clerk@example.com")


class FakePostgrest:

    def __init__(self):
        self.closed = False

    async def aclose(self):
        self.closed = True


@pytest.fixture
def supabase_client(monkeypatch):
    client = SimpleNamespace(postgrest=FakePostgrest())

    async def _create(context):
        return client

    monkeypatch.setattr(settings, "SUPABASE_ENABLED", True)
    monkeypatch.setattr(deps, "create_supabase_client", _create)
    return client


async def test_supabase_client_is_closed_after_the_request(supabase_client):
    repositories = deps.get_billing_repository(CLERK, None)

    repo = await repositories.__anext__()
    assert isinstance(repo, SupabaseBillingRepository)
    assert not supabase_client.postgrest.closed

    with pytest.raises(StopAsyncIteration):
        await repositories.__anext__()
    assert supabase_client.postgrest.closed


async def test_supabase_client_is_closed_when_the_request_fails(supabase_client):
    repositories = deps.get_billing_repository(CLERK, None)
    await repositories.__anext__()

    with pytest.raises(RuntimeError):
        await repositories.athrow(RuntimeError("route failed"))
    assert supabase_client.postgrest.closed


async def test_sql_repository_when_supabase_is_disabled(monkeypatch, db):
    monkeypatch.setattr(settings, "SUPABASE_ENABLED", False)
    repositories = deps.get_billing_repository(CLERK, db)

    repo = await repositories.__anext__()

    assert isinstance(repo, SqlBillingRepository)
    await repositories.aclose()


async def test_close_supabase_client_closes_postgrest():
    client = SimpleNamespace(postgrest=FakePostgrest())
    await close_supabase_client(client)
    assert client.postgrest.closed
