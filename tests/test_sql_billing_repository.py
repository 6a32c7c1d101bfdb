import uuid
from datetime import date

import pytest

from estate_billing.core.exceptions import ConflictError, NotFoundError, StaleWriteError
from estate_billing.models import Tenant, Unit, UtilityBill
from estate_billing.services.billing_repository import UtilityBillRecord


async def test_units_carry_their_current_tenant(sql_repo, greenview):
    units = await sql_repo.list_units(greenview["property"].id)
    assert [(u.unit_number, u.tenant_name, u.is_occupied) for u in units] == [
        ("A1", "Alice Wanjiru", True),
        ("A2", "Vacant", False),
    ]


async def test_inactive_tenant_leaves_unit_vacant(sql_repo, greenview, db):
    db.query(Tenant).update({Tenant.is_active: False})
    db.commit()
    unit = await sql_repo.get_unit(greenview["A1"].id)
    assert not unit.is_occupied


async def test_bills_for_a_period_include_display_joins(sql_repo, greenview):
    bills = await sql_repo.list_utility_bills([greenview["A1"].id, greenview["A2"].id], date(2025, 2, 1))
    assert len(bills) == 1
    assert bills[0].unit_number == "A2"
    assert bills[0].property_name == "Greenview"
    assert bills[0].tenant_name is None


async def test_update_without_expected_version_always_applies(sql_repo, greenview):
    bill = (await sql_repo.list_utility_bills([greenview["A2"].id], date(2025, 2, 1)))[0]
    updated = await sql_repo.update_utility_bill(bill.id, {"arrears_bf": 150, "unit_id": uuid.uuid4()})
    assert updated.arrears_bf == 150
    assert updated.unit_id == greenview["A2"].id
    assert updated.version == 2


async def test_update_of_missing_bill_is_not_found(sql_repo, greenview):
    with pytest.raises(NotFoundError):
        await sql_repo.update_utility_bill(uuid.uuid4(), {"rate": 20}, expected_version=1)


async def test_second_writer_with_old_version_is_stale(sql_repo, greenview):
    bill = (await sql_repo.list_utility_bills([greenview["A2"].id], date(2025, 2, 1)))[0]
    await sql_repo.update_utility_bill(bill.id, {"current_reading": 55}, expected_version=1)
    with pytest.raises(StaleWriteError):
        await sql_repo.update_utility_bill(bill.id, {"current_reading": 60}, expected_version=1)


async def test_insert_records_the_actor(sql_repo, greenview, db):
    saved = await sql_repo.insert_utility_bill(UtilityBillRecord(
        unit_id=greenview["A1"].id, billing_month=date(2025, 3, 1), current_reading=12, rate=15,
        units_consumed=12, total_amount=180,
    ))
    assert saved.id is not None
    assert saved.version == 1
    assert await sql_repo.unit_has_bills(greenview["A1"].id)
    assert db.get(UtilityBill, saved.id).recorded_by == "clerk@example.com"


async def test_regressed_reading_is_stored_with_zero_consumption(sql_repo, greenview):
    saved = await sql_repo.insert_utility_bill(UtilityBillRecord(
        unit_id=greenview["A1"].id, billing_month=date(2025, 3, 1), previous_reading=40, current_reading=35,
        rate=15, units_consumed=0, total_amount=0,
    ))
    assert (saved.previous_reading, saved.current_reading, saved.units_consumed) == (40, 35, 0)


async def test_delete_unit(sql_repo, greenview, db):
    unit = Unit(unit_number="A3", property_id=greenview["property"].id)
    db.add(unit)
    db.commit()

    await sql_repo.delete_unit(unit.id)

    assert db.get(Unit, unit.id) is None
    with pytest.raises(NotFoundError):
        await sql_repo.delete_unit(unit.id)


async def test_delete_unit_with_former_tenant_is_a_conflict(sql_repo, greenview, db):
    db.query(Tenant).update({Tenant.is_active: False})
    db.commit()

    with pytest.raises(ConflictError):
        await sql_repo.delete_unit(greenview["A1"].id)

    db.expire_all()
    assert db.get(Unit, greenview["A1"].id) is not None


def test_unit_occupancy_and_property_are_derived(greenview):
    a1, a2 = greenview["A1"], greenview["A2"]
    assert a1.is_occupied
    assert a1.current_tenant.name == "Alice Wanjiru"
    assert not a2.is_occupied
    assert a2.property is greenview["property"]


async def test_statement_reads(sql_repo, statement_data):
    tenant_id = statement_data["tenant"].id

    tenant = await sql_repo.get_tenant(tenant_id)
    assert tenant["unit_number"] == "A1"
    assert tenant["property_name"] == "Greenview"

    payments = await sql_repo.list_tenant_payments(tenant_id)
    assert [p["amount"] for p in payments] == [3000, 12000]

    invoice = await sql_repo.get_invoice(statement_data["invoice"].id)
    assert invoice["tenant_name"] == "Alice Wanjiru"
    assert invoice["unit_number"] == "A1"

    payment = await sql_repo.get_payment(statement_data["paid"].id)
    assert payment["reference"] == "QAB123"
    assert payment["property_name"] == "Greenview"


async def test_payments_between_include_the_whole_last_day(sql_repo, statement_data):
    payments = await sql_repo.list_payments(date(2025, 3, 1), date(2025, 3, 20))
    assert len(payments) == 2
    assert await sql_repo.list_payments(date(2025, 4, 1), date(2025, 4, 30)) == []


async def test_missing_rows_read_as_none(sql_repo, greenview):
    assert await sql_repo.get_payment(uuid.uuid4()) is None
    assert await sql_repo.get_invoice(uuid.uuid4()) is None
    assert await sql_repo.get_tenant(uuid.uuid4()) is None
    assert await sql_repo.get_property(uuid.uuid4()) is None
