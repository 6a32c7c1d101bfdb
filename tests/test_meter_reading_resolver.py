import asyncio
from datetime import date

import pytest

from estate_billing.core.config import settings
from estate_billing.core.exceptions import TransientFetchError
from estate_billing.services.meter_reading_resolver import resolve_many, resolve_previous_reading


async def test_previous_reading_carries_forward(sql_repo, greenview):
    # A2 was billed in February with current reading 50
    assert await resolve_previous_reading(sql_repo, greenview["A2"].id, date(2025, 3, 1)) == 50


async def test_unit_without_history_starts_at_zero(sql_repo, greenview):
    assert await resolve_previous_reading(sql_repo, greenview["A1"].id, date(2025, 3, 1)) == 0


async def test_lookup_is_strictly_before_the_period(sql_repo, greenview):
    assert await resolve_previous_reading(sql_repo, greenview["A2"].id, date(2025, 2, 1)) == 0


async def test_latest_earlier_bill_wins(memory_repo):
    prop = memory_repo.add_property("Riverside")
    unit = memory_repo.add_unit(prop, "B1")
    memory_repo.add_bill(unit.id, date(2024, 12, 1), current_reading=80)
    memory_repo.add_bill(unit.id, date(2025, 1, 1), current_reading=120, previous_reading=80)
    assert await resolve_previous_reading(memory_repo, unit.id, date(2025, 2, 1)) == 120


async def test_failed_lookup_defaults_to_zero_with_warning(memory_repo):
    prop = memory_repo.add_property("Riverside")
    ok = memory_repo.add_unit(prop, "B1")
    broken = memory_repo.add_unit(prop, "B2")
    memory_repo.add_bill(ok.id, date(2025, 1, 1), current_reading=64)
    memory_repo.lookup_failures.add(broken.id)

    readings, warnings = await resolve_many(memory_repo, [ok.id, broken.id], date(2025, 2, 1))

    assert readings == {ok.id: 64, broken.id: 0.0}
    assert [w["kind"] for w in warnings] == ["previous_reading_unavailable"]
    assert warnings[0]["unit_id"] == str(broken.id)


async def test_slow_lookup_times_out(memory_repo, monkeypatch):
    monkeypatch.setattr(settings, "BILLING_REQUEST_TIMEOUT_SECONDS", 0.01)
    prop = memory_repo.add_property("Riverside")
    unit = memory_repo.add_unit(prop, "B1")
    memory_repo.delay = 0.5

    with pytest.raises(TransientFetchError) as exc:
        await resolve_previous_reading(memory_repo, unit.id, date(2025, 2, 1))
    assert exc.value.details["retryable"] is True


async def test_lookups_run_concurrently(memory_repo):
    prop = memory_repo.add_property("Riverside")
    units = [memory_repo.add_unit(prop, f"C{i}") for i in range(5)]
    memory_repo.delay = 0.2

    loop = asyncio.get_running_loop()
    started = loop.time()
    readings, _ = await resolve_many(memory_repo, [u.id for u in units], date(2025, 2, 1))

    assert len(readings) == 5
    assert loop.time() - started < 0.2 * 5
