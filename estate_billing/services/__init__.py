from estate_billing.services.billing_period_store import BillingMode, BillingPeriodStore, BillLine
from estate_billing.services.billing_session import BillingSession, SessionState
from estate_billing.services.bill_persister import BillPersister, PersistResult

__all__ = [
    "BillingMode",
    "BillingPeriodStore",
    "BillLine",
    "BillingSession",
    "SessionState",
    "BillPersister",
    "PersistResult",
]
