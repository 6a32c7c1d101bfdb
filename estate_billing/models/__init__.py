# Import all models in correct order to avoid circular imports
from estate_billing.models.property import Property, Unit
from estate_billing.models.tenant import Tenant
from estate_billing.models.payment import Payment, PaymentStatus, Invoice
from estate_billing.models.utility_bill import UtilityBill

__all__ = [
    "Property",
    "Unit",
    "Tenant",
    "Payment",
    "PaymentStatus",
    "Invoice",
    "UtilityBill",
]
