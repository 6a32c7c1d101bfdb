from datetime import datetime, timedelta, timezone

import pytest

from estate_billing.core.exceptions import NotFoundError
from estate_billing.services.session_registry import BillingSessionRegistry


def test_sessions_are_found_by_owner():
    registry = BillingSessionRegistry(ttl_minutes=5)
    session = registry.create(owner="clerk@example.com")

    assert registry.get(session.id, owner="clerk@example.com") is session
    with pytest.raises(NotFoundError):
        registry.get(session.id, owner="someone@example.com")


def test_idle_sessions_expire():
    registry = BillingSessionRegistry(ttl_minutes=5)
    session = registry.create(owner="clerk@example.com")
    session.updated_at = datetime.now(timezone.utc) - timedelta(minutes=6)

    with pytest.raises(NotFoundError):
        registry.get(session.id)
    assert len(registry) == 0


def test_purge_only_drops_expired_sessions():
    registry = BillingSessionRegistry(ttl_minutes=5)
    stale = registry.create()
    fresh = registry.create()
    stale.updated_at = datetime.now(timezone.utc) - timedelta(hours=1)

    assert registry.purge_expired() == 1
    assert registry.get(fresh.id) is fresh


def test_discard_is_idempotent():
    registry = BillingSessionRegistry()
    session = registry.create()
    registry.discard(session.id)
    registry.discard(session.id)
    assert len(registry) == 0
