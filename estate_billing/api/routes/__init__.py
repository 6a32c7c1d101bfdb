from estate_billing.api.routes.billing import router as billing_router
from estate_billing.api.routes.properties import router as properties_router
from estate_billing.api.routes.reports import router as reports_router
from estate_billing.api.routes.statements import router as statements_router

__all__ = [
    "billing_router",
    "properties_router",
    "reports_router",
    "statements_router",
]
