from datetime import date

from estate_billing.services.bill_persister import BillPersister
from estate_billing.services.billing_period_store import BillingMode, BillingPeriodStore

MARCH = date(2025, 3, 1)


async def test_unbilled_period_loads_in_create_mode(sql_repo, greenview):
    result = await BillingPeriodStore(sql_repo).load_or_init(greenview["property"].id, MARCH, 15)

    assert result.mode == BillingMode.CREATE
    assert [(l.unit_number, l.previous_reading) for l in result.lines] == [("A1", 0), ("A2", 50)]
    assert all(l.current_reading is None and l.arrears_bf == 0 and l.bill_id is None for l in result.lines)
    assert [l.tenant_name for l in result.lines] == ["Alice Wanjiru", "Vacant"]
    assert result.rate == 15


async def test_saved_period_reloads_in_edit_mode(sql_repo, greenview):
    store = BillingPeriodStore(sql_repo)
    created = await store.load_or_init(greenview["property"].id, MARCH, 15)
    for line, reading in zip(created.lines, (30, 80)):
        line.current_reading = reading
        line.recompute(15)
    saved = await BillPersister(sql_repo).persist(MARCH, 15, created.lines)
    assert saved.ok

    reloaded = await store.load_or_init(greenview["property"].id, MARCH)

    assert reloaded.mode == BillingMode.EDIT
    assert len(reloaded.lines) == 2
    assert [(l.unit_number, l.current_reading, l.units_consumed, l.total_amount) for l in reloaded.lines] == [
        ("A1", 30, 30, 450),
        ("A2", 80, 30, 450),
    ]
    assert all(l.bill_id is not None and l.version == 1 for l in reloaded.lines)
    assert reloaded.rate == 15
    assert reloaded.warnings == []


async def test_property_without_units_is_nothing_to_bill(memory_repo):
    prop = memory_repo.add_property("Empty Court")
    result = await BillingPeriodStore(memory_repo).load_or_init(prop, MARCH, 10)
    assert result.lines == []
    assert result.mode == BillingMode.CREATE


async def test_diverging_rates_use_first_bill_and_warn(memory_repo):
    prop = memory_repo.add_property("Riverside")
    b1 = memory_repo.add_unit(prop, "B1")
    b2 = memory_repo.add_unit(prop, "B2")
    memory_repo.add_bill(b1.id, MARCH, current_reading=10, rate=12)
    memory_repo.add_bill(b2.id, MARCH, current_reading=10, rate=14)

    result = await BillingPeriodStore(memory_repo).load_or_init(prop, MARCH)

    assert result.rate == 12
    assert [w["kind"] for w in result.warnings] == ["rate_divergence"]


async def test_edit_mode_reports_units_without_a_bill(memory_repo):
    prop = memory_repo.add_property("Riverside")
    b1 = memory_repo.add_unit(prop, "B1")
    b2 = memory_repo.add_unit(prop, "B2")
    memory_repo.add_bill(b1.id, MARCH, current_reading=10, rate=12)

    result = await BillingPeriodStore(memory_repo).load_or_init(prop, MARCH)

    assert result.mode == BillingMode.EDIT
    assert [l.unit_number for l in result.lines] == ["B1"]
    warning = result.warnings[0]
    assert warning["kind"] == "unbilled_units"
    assert warning["unit_ids"] == [str(b2.id)]


async def test_bills_of_other_months_do_not_trigger_edit_mode(memory_repo):
    prop = memory_repo.add_property("Riverside")
    unit = memory_repo.add_unit(prop, "B1")
    memory_repo.add_bill(unit.id, date(2025, 2, 1), current_reading=44)

    result = await BillingPeriodStore(memory_repo).load_or_init(prop, MARCH, 10)

    assert result.mode == BillingMode.CREATE
    assert result.lines[0].previous_reading == 44
