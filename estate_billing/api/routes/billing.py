from fastapi import APIRouter, Depends, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from dataclasses import asdict
import logging

from estate_billing.api.routes.statements import pdf_response
from estate_billing.core.deps import (
    get_billing_repository, get_billing_session, get_period_store, get_persister, get_session_registry,
)
from estate_billing.core.exceptions import BillingError, NotFoundError, SessionStateError, ValidationError
from estate_billing.core.security import RequestContext, get_request_context
from estate_billing.schemas.billing import (
    BillingSessionCreate, BillingSessionResponse, BillLineUpdate, RateUpdate, SaveResponse,
)
from estate_billing.services.bill_persister import BillPersister
from estate_billing.services.billing_period_store import BillingPeriodStore
from estate_billing.services.billing_repository import BillingRepository, call_with_timeout
from estate_billing.services.billing_session import BillingSession
from estate_billing.services.session_registry import BillingSessionRegistry
from estate_billing.services.statement_renderer import StatementKind

logger = logging.getLogger(__name__)

router = APIRouter()


def session_response(session: BillingSession) -> BillingSessionResponse:
    snapshot = session.snapshot()
    data = asdict(snapshot)
    data["state"] = snapshot.state.value
    data["mode"] = snapshot.mode.value if snapshot.mode else None
    return BillingSessionResponse(**data)


async def _open_session(
    registry: BillingSessionRegistry,
    store: BillingPeriodStore,
    context: RequestContext,
    property_id,
    billing_period,
    rate,
) -> BillingSession:
    session = registry.create(owner=context.actor)
    try:
        await session.select(store, property_id, billing_period, rate)
    except ValidationError:
        registry.discard(session.id)
        raise
    except BillingError as exc:
        # Kept in ERROR state so the client can retry the load
        exc.details["session_id"] = session.id
        raise
    return session


async def _property_name(repo: BillingRepository, session: BillingSession):
    prop = await call_with_timeout(repo.get_property(session.property_id), operation="load property")
    return prop["name"] if prop else None


@router.post("/sessions", response_model=BillingSessionResponse, status_code=status.HTTP_201_CREATED)
async def open_billing_session(
    body: BillingSessionCreate,
    context: RequestContext = Depends(get_request_context),
    registry: BillingSessionRegistry = Depends(get_session_registry),
    store: BillingPeriodStore = Depends(get_period_store),
):
    """
    Start billing a property for a month.
    Loads existing bills (edit mode) or prepares one draft per unit (create mode).
    """
    prop = await call_with_timeout(store.repo.get_property(body.property_id), operation="load property")
    if prop is None:
        raise NotFoundError("Property not found", property_id=str(body.property_id))
    session = await _open_session(registry, store, context, body.property_id, body.billing_period, body.rate)
    return session_response(session)


@router.get("/sessions/{session_id}", response_model=BillingSessionResponse)
async def get_session(session: BillingSession = Depends(get_billing_session)):
    return session_response(session)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def discard_session(
    session: BillingSession = Depends(get_billing_session),
    registry: BillingSessionRegistry = Depends(get_session_registry),
):
    """Abandon the session, nothing is written"""
    registry.discard(session.id)


@router.put("/sessions/{session_id}/rate", response_model=BillingSessionResponse)
async def set_rate(body: RateUpdate, session: BillingSession = Depends(get_billing_session)):
    session.set_rate(body.rate)
    return session_response(session)


@router.put("/sessions/{session_id}/lines/{unit_id}", response_model=BillingSessionResponse)
async def update_line(
    unit_id: str,
    body: BillLineUpdate,
    session: BillingSession = Depends(get_billing_session),
):
    """Enter a reading or arrears for one unit"""
    provided = body.model_fields_set
    if "arrears_bf" in provided:
        session.set_arrears(unit_id, body.arrears_bf)
    if "previous_reading" in provided:
        session.set_previous_reading(unit_id, body.previous_reading)
    if "current_reading" in provided:
        session.set_current_reading(unit_id, body.current_reading)
    if body.acknowledge_regression:
        session.acknowledge_regression(unit_id)
    return session_response(session)


@router.post("/sessions/{session_id}/retry", response_model=BillingSessionResponse)
async def retry_load(
    session: BillingSession = Depends(get_billing_session),
    store: BillingPeriodStore = Depends(get_period_store),
):
    await session.retry(store)
    return session_response(session)


@router.post("/sessions/{session_id}/create-mode", response_model=BillingSessionResponse)
async def switch_to_create_mode(
    session: BillingSession = Depends(get_billing_session),
    store: BillingPeriodStore = Depends(get_period_store),
):
    """Replace the loaded bills with fresh drafts"""
    await session.switch_to_create_mode(store)
    return session_response(session)


@router.post("/sessions/{session_id}/save", response_model=SaveResponse)
async def save_session(
    only_failed: bool = Query(False),
    session: BillingSession = Depends(get_billing_session),
    context: RequestContext = Depends(get_request_context),
    registry: BillingSessionRegistry = Depends(get_session_registry),
    store: BillingPeriodStore = Depends(get_period_store),
    persister: BillPersister = Depends(get_persister),
):
    """
    Save every line (or only the previously failed ones).
    Returns 207 with the failed units when some bills could not be saved.
    """
    result = await session.save(persister, only_failed=only_failed)
    if result.failed:
        content = session.error.to_dict()
        content["session"] = session_response(session)
        return JSONResponse(status_code=status.HTTP_207_MULTI_STATUS, content=jsonable_encoder(content))

    registry.discard(session.id)
    reloaded = None
    try:
        fresh = await _open_session(registry, store, context, session.property_id, session.period, session.rate)
        reloaded = session_response(fresh)
    except BillingError as exc:
        logger.warning(f"[BILLING] Saved but could not reload {session.period:%Y-%m}: {exc.message}")

    return SaveResponse(
        message=f"{len(result.succeeded)} utility bill(s) saved",
        succeeded=result.to_dict()["succeeded"],
        session=reloaded,
    )


@router.get("/sessions/{session_id}/statement.pdf")
async def session_statement(
    session: BillingSession = Depends(get_billing_session),
    repo: BillingRepository = Depends(get_billing_repository),
):
    """Statement listing every line of the session"""
    if session.period is None:
        raise SessionStateError("Billing session has not been loaded")
    payload = {
        "property_name": await _property_name(repo, session),
        "billing_period": session.period,
        "rate": session.rate,
        "lines": [line.to_dict() for line in session.lines],
    }
    return pdf_response(StatementKind.UTILITY_BILL_BATCH, payload)


@router.get("/sessions/{session_id}/lines/{unit_id}/statement.pdf")
async def line_statement(
    unit_id: str,
    session: BillingSession = Depends(get_billing_session),
    repo: BillingRepository = Depends(get_billing_repository),
):
    """Bill for a single unit"""
    if session.period is None:
        raise SessionStateError("Billing session has not been loaded")
    line = session.line(unit_id)
    payload = {
        "property_name": await _property_name(repo, session),
        "billing_period": session.period,
        "rate": session.rate,
        "line": line.to_dict(),
    }
    return pdf_response(StatementKind.UTILITY_BILL_SINGLE, payload)
