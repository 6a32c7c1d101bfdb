import asyncio
import dataclasses
import uuid
from datetime import date, datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from estate_billing.core.deps import get_billing_repository
from estate_billing.core.exceptions import ConflictError, NotFoundError, StaleWriteError, TransientFetchError
from estate_billing.core.security import RequestContext, get_request_context
from estate_billing.database import get_db
from estate_billing.db.base import Base
from estate_billing.main import app
from estate_billing.models import Invoice, Payment, Property, Tenant, Unit, UtilityBill
from estate_billing.services.billing_repository import BillingRepository, TenantRef, UnitRecord, UtilityBillRecord
from estate_billing.services.session_registry import billing_sessions

TEST_DATABASE_URL = "sqlite://"

CLERK = RequestContext(user_id="user-1", email="clerk@example.com", role="authenticated")


@pytest.fixture
def engine():
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def context():
    return CLERK


@pytest.fixture
def sql_repo(db, context):
    from estate_billing.services.sql_billing_repository import SqlBillingRepository
    return SqlBillingRepository(db, context)


@pytest.fixture
def greenview(db):
    """Greenview: A1 (occupied, never billed) and A2 (vacant, billed in February with reading 50)"""
    prop = Property(name="Greenview", address="Ngong Road")
    a1 = Unit(unit_number="A1", property=prop)
    a2 = Unit(unit_number="A2", property=prop)
    db.add_all([prop, a1, a2])
    db.flush()
    db.add(Tenant(name="Alice Wanjiru", phone="0700000001", email="alice@example.com", unit_id=a1.id))
    db.add(UtilityBill(
        unit_id=a2.id, billing_month=date(2025, 2, 1), previous_reading=20, current_reading=50,
        units_consumed=30, rate=15, total_amount=450,
    ))
    db.commit()
    return {"property": prop, "A1": a1, "A2": a2}


@pytest.fixture
def statement_data(db, greenview):
    tenant = db.query(Tenant).filter(Tenant.name == "Alice Wanjiru").one()
    prop = greenview["property"]
    paid = Payment(
        tenant_id=tenant.id, property_id=prop.id, amount=12000, status="paid",
        payment_method="mpesa", reference="QAB123", payment_date=datetime(2025, 3, 5, 10, 0),
    )
    pending = Payment(
        tenant_id=tenant.id, property_id=prop.id, amount=3000, status="pending",
        payment_method="cash", payment_date=datetime(2025, 3, 20, 9, 0),
    )
    invoice = Invoice(tenant_id=tenant.id, invoice_type="rent", amount=15000, due_date=datetime(2025, 3, 31))
    db.add_all([paid, pending, invoice])
    db.commit()
    return {"tenant": tenant, "paid": paid, "pending": pending, "invoice": invoice}


# ── In-memory repository ──────────────────────────────────────────────────────

class InMemoryBillingRepository(BillingRepository):
    """Billing repository kept in dicts, recording every write it receives"""

    def __init__(self, context=CLERK):
        super().__init__(context)
        self.properties = {}
        self.units = {}
        self.bills = {}
        self.writes = []
        self.write_failures = {}
        self.lookup_failures = set()
        self.delay = 0.0

    # Seeding

    def add_property(self, name):
        property_id = uuid.uuid4()
        self.properties[property_id] = {"id": property_id, "name": name, "address": None}
        return property_id

    def add_unit(self, property_id, unit_number, tenant_name=None):
        tenant = TenantRef(id=uuid.uuid4(), name=tenant_name) if tenant_name else None
        unit = UnitRecord(id=uuid.uuid4(), unit_number=unit_number, property_id=property_id, tenant=tenant)
        self.units[unit.id] = unit
        return unit

    def add_bill(self, unit_id, billing_month, current_reading, previous_reading=0.0, rate=10.0, arrears_bf=0.0):
        consumed = max(0.0, current_reading - previous_reading)
        bill = UtilityBillRecord(
            id=uuid.uuid4(), unit_id=unit_id, billing_month=billing_month,
            current_reading=current_reading, previous_reading=previous_reading,
            units_consumed=consumed, rate=rate, total_amount=consumed * rate, arrears_bf=arrears_bf,
            unit_number=self.units[unit_id].unit_number,
        )
        self.bills[bill.id] = bill
        return bill

    async def _pause(self):
        if self.delay:
            await asyncio.sleep(self.delay)

    # Billing

    async def list_properties(self):
        return sorted(self.properties.values(), key=lambda p: p["name"])

    async def get_property(self, property_id):
        return self.properties.get(property_id)

    async def list_units(self, property_id):
        await self._pause()
        units = [u for u in self.units.values() if u.property_id == property_id]
        return sorted(units, key=lambda u: u.unit_number)

    async def get_unit(self, unit_id):
        return self.units.get(unit_id)

    async def list_utility_bills(self, unit_ids, period):
        await self._pause()
        found = [
            dataclasses.replace(b) for b in self.bills.values()
            if b.unit_id in set(unit_ids) and b.billing_month == period
        ]
        return sorted(found, key=lambda b: b.unit_number or "")

    async def latest_utility_bill_before(self, unit_id, period):
        await self._pause()
        if unit_id in self.lookup_failures:
            raise TransientFetchError("Could not load previous reading")
        earlier = [b for b in self.bills.values() if b.unit_id == unit_id and b.billing_month < period]
        if not earlier:
            return None
        return dataclasses.replace(max(earlier, key=lambda b: b.billing_month))

    async def insert_utility_bill(self, row):
        self.writes.append(("insert", row.unit_id))
        await self._pause()
        if row.unit_id in self.write_failures:
            raise self.write_failures[row.unit_id]
        if any(b.unit_id == row.unit_id and b.billing_month == row.billing_month for b in self.bills.values()):
            raise ConflictError(unit_id=str(row.unit_id))
        bill = dataclasses.replace(row, id=uuid.uuid4(), version=1, unit_number=self.units[row.unit_id].unit_number)
        self.bills[bill.id] = bill
        return dataclasses.replace(bill)

    async def update_utility_bill(self, bill_id, fields, expected_version=None):
        bill = self.bills.get(bill_id)
        self.writes.append(("update", bill.unit_id if bill else None))
        await self._pause()
        if bill is not None and bill.unit_id in self.write_failures:
            raise self.write_failures[bill.unit_id]
        if bill is None:
            raise NotFoundError("Utility bill not found")
        if expected_version is not None and bill.version != expected_version:
            raise StaleWriteError(bill_id=str(bill_id))
        updated = dataclasses.replace(bill, **fields, version=bill.version + 1)
        self.bills[bill_id] = updated
        return dataclasses.replace(updated)

    # Units

    async def unit_has_bills(self, unit_id):
        return any(b.unit_id == unit_id for b in self.bills.values())

    async def delete_unit(self, unit_id):
        self.units.pop(unit_id)

    # Statements and reports are covered against SQLite

    async def get_payment(self, payment_id):
        return None

    async def get_invoice(self, invoice_id):
        return None

    async def get_tenant(self, tenant_id):
        return None

    async def list_tenant_payments(self, tenant_id):
        return []

    async def list_payments(self, start, end, property_id=None):
        return []

    async def list_units_with_property(self, property_id=None):
        return []

    async def list_utility_bills_between(self, start, end, property_id=None):
        return []

    async def list_tenants(self, property_id=None):
        return []


@pytest.fixture
def memory_repo():
    return InMemoryBillingRepository()


# ── API ───────────────────────────────────────────────────────────────────────

@pytest.fixture
def client(db, context):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_request_context] = lambda: context
    billing_sessions._sessions.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()
    billing_sessions._sessions.clear()


@pytest.fixture
def memory_client(memory_repo, context):
    """API client backed by the in-memory repository"""
    app.dependency_overrides[get_billing_repository] = lambda: memory_repo
    app.dependency_overrides[get_request_context] = lambda: context
    billing_sessions._sessions.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()
    billing_sessions._sessions.clear()
