from typing import AsyncIterator

from fastapi import Depends
from sqlalchemy.orm import Session
import logging

from estate_billing.core.config import settings
from estate_billing.core.security import RequestContext, get_request_context
from estate_billing.database import get_db
from estate_billing.services.bill_persister import BillPersister
from estate_billing.services.billing_period_store import BillingPeriodStore
from estate_billing.services.billing_repository import BillingRepository
from estate_billing.services.billing_session import BillingSession
from estate_billing.services.report_service import ReportService
from estate_billing.services.session_registry import BillingSessionRegistry, billing_sessions
from estate_billing.services.sql_billing_repository import SqlBillingRepository
from estate_billing.services.supabase_service import (
    SupabaseBillingRepository, close_supabase_client, create_supabase_client,
)

logger = logging.getLogger(__name__)


async def get_billing_repository(
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
) -> AsyncIterator[BillingRepository]:
    """
    Repository bound to the caller.
    Supabase PostgREST when SUPABASE_ENABLED, otherwise the SQL database.
    The Supabase client lives for one request and is closed afterwards.
    """
    if not settings.SUPABASE_ENABLED:
        yield SqlBillingRepository(db, context)
        return
    client = await create_supabase_client(context)
    try:
        yield SupabaseBillingRepository(client, context)
    finally:
        await close_supabase_client(client)


def get_session_registry() -> BillingSessionRegistry:
    return billing_sessions


def get_billing_session(
    session_id: str,
    context: RequestContext = Depends(get_request_context),
    registry: BillingSessionRegistry = Depends(get_session_registry),
) -> BillingSession:
    return registry.get(session_id, owner=context.actor)


def get_period_store(repo: BillingRepository = Depends(get_billing_repository)) -> BillingPeriodStore:
    return BillingPeriodStore(repo)


def get_persister(repo: BillingRepository = Depends(get_billing_repository)) -> BillPersister:
    return BillPersister(repo)


def get_report_service(repo: BillingRepository = Depends(get_billing_repository)) -> ReportService:
    return ReportService(repo)
