"""
Billing Session
The state machine behind one round of utility billing for a property.

    UNINITIALIZED -> LOADING -> READY(create|edit) -> SAVING -> SAVED
                        |                               |
                        v                               v
                      ERROR --retry--> LOADING        READY (partial failure)

Lines are only replaced once a load has fully succeeded, and nothing is
written anywhere except by save().
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple
from uuid import uuid4

from estate_billing.core.config import settings
from estate_billing.core.exceptions import (
    BillingError, NotFoundError, PartialPersistError, SessionStateError, ValidationError,
)
from estate_billing.services.bill_persister import BillPersister, PersistResult
from estate_billing.services.billing_period_store import BillingMode, BillingPeriodStore, BillLine, LoadResult
from estate_billing.services.billing_periods import normalize_billing_period

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


def _parse_amount(value, field: str, unit: Optional[BillLine] = None, allow_empty: bool = False) -> Optional[float]:
    if value is None or value == "":
        if allow_empty:
            return None
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"Invalid {field.replace('_', ' ')} '{value}'",
            unit_id=unit.unit_id if unit else None,
            unit_number=unit.unit_number if unit else None,
            field=field,
        )
    if number < 0:
        raise ValidationError(
            f"{field.replace('_', ' ').capitalize()} cannot be negative",
            unit_id=unit.unit_id if unit else None,
            unit_number=unit.unit_number if unit else None,
            field=field,
        )
    return number


@dataclass(frozen=True)
class SessionSnapshot:
    session_id: str
    state: SessionState
    mode: Optional[BillingMode]
    property_id: Any
    billing_period: Optional[date]
    rate: float
    lines: Tuple[Dict[str, Any], ...]
    warnings: Tuple[dict, ...]
    failed_unit_ids: Tuple[str, ...]
    error: Optional[Dict[str, Any]]
    total_units_consumed: float
    total_amount: float
    updated_at: datetime


class BillingSession:
    """One property and billing period being billed by one operator"""

    def __init__(
        self,
        session_id: Optional[str] = None,
        owner: Optional[str] = None,
        allow_regression_override: Optional[bool] = None,
    ):
        self.id = session_id or str(uuid4())
        self.owner = owner
        self.allow_regression_override = (
            settings.BILLING_ALLOW_REGRESSION_OVERRIDE
            if allow_regression_override is None
            else allow_regression_override
        )
        self.state = SessionState.UNINITIALIZED
        self.mode: Optional[BillingMode] = None
        self.property_id = None
        self.period: Optional[date] = None
        self.rate = 0.0
        self.lines: List[BillLine] = []
        self.warnings: List[dict] = []
        self.error: Optional[BillingError] = None
        self.failed_unit_ids: Set[Any] = set()
        self.last_result: Optional[PersistResult] = None
        self._pending: Optional[Tuple[Any, date, Optional[float]]] = None
        self.updated_at = datetime.now(timezone.utc)

    # ── Guards ──────────────────────────────────────────────────────────────

    def _touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise SessionStateError(
                f"Billing session is {self.state.value}, expected {allowed}",
                state=self.state.value,
            )

    def line(self, unit_id) -> BillLine:
        for line in self.lines:
            if str(line.unit_id) == str(unit_id):
                return line
        raise NotFoundError(f"Unit {unit_id} is not part of this billing session", unit_id=str(unit_id))

    # ── Loading ─────────────────────────────────────────────────────────────

    async def select(self, store: BillingPeriodStore, property_id, period, rate: Optional[float] = None):
        """Select (or change) the property and billing period, then load"""
        if self.state in (SessionState.LOADING, SessionState.SAVING):
            raise SessionStateError(
                f"Billing session is {self.state.value}, wait for it to finish",
                state=self.state.value,
            )
        billing_month = normalize_billing_period(period)
        if rate is None and self.rate:
            rate = self.rate
        rate = _parse_amount(rate, "rate", allow_empty=True)
        self._pending = (property_id, billing_month, rate)
        return await self._load(store)

    async def retry(self, store: BillingPeriodStore):
        """Re-run the last load, typically after a transient failure"""
        self._require(SessionState.ERROR, SessionState.READY, SessionState.SAVED)
        if self._pending is None:
            raise SessionStateError("Nothing to retry, select a property and billing month first")
        return await self._load(store)

    async def _load(self, store: BillingPeriodStore):
        property_id, billing_month, rate = self._pending
        self.state = SessionState.LOADING
        self._touch()
        try:
            result = await store.load_or_init(property_id, billing_month, rate)
        except BillingError as exc:
            # Previous lines stay as they were
            self.state = SessionState.ERROR
            self.error = exc
            logger.error(f"[BILLING] Session {self.id} failed to load {billing_month:%Y-%m}: {exc.message}")
            raise

        self.property_id = property_id
        self.period = billing_month
        self._apply(result)
        logger.info(
            f"[BILLING] Session {self.id} ready in {self.mode.value} mode "
            f"with {len(self.lines)} line(s) for {billing_month:%Y-%m}"
        )
        return self.snapshot()

    def _apply(self, result: LoadResult) -> None:
        self.mode = result.mode
        self.lines = result.lines
        self.rate = result.rate
        self.warnings = list(result.warnings)
        self.error = None
        self.failed_unit_ids = set()
        self.last_result = None
        self.state = SessionState.READY
        self._touch()

    async def switch_to_create_mode(self, store: BillingPeriodStore):
        """Discard the loaded bills and start over with fresh drafts"""
        self._require(SessionState.READY)
        if self.mode != BillingMode.EDIT:
            raise SessionStateError("Session is already in create mode")

        self.state = SessionState.LOADING
        try:
            units = await store.list_units(self.property_id)
            result = await store.init_create_lines(units, self.period, self.rate)
        except BillingError as exc:
            self.state = SessionState.READY
            self.error = exc
            raise
        self._apply(result)
        logger.info(f"[BILLING] Session {self.id} switched to create mode")
        return self.snapshot()

    # ── Editing ─────────────────────────────────────────────────────────────

    def set_rate(self, rate) -> None:
        self._require(SessionState.READY)
        value = _parse_amount(rate, "rate")
        self.rate = value
        for line in self.lines:
            line.recompute(value)
        self._touch()

    def set_current_reading(self, unit_id, value) -> BillLine:
        self._require(SessionState.READY)
        line = self.line(unit_id)
        line.current_reading = _parse_amount(value, "current_reading", line, allow_empty=True)
        line.regression_acknowledged = False
        line.recompute(self.rate)
        self._touch()
        return line

    def set_arrears(self, unit_id, value) -> BillLine:
        self._require(SessionState.READY)
        line = self.line(unit_id)
        line.arrears_bf = _parse_amount(value, "arrears_bf", line)
        self._touch()
        return line

    def set_previous_reading(self, unit_id, value) -> BillLine:
        """Correct the previous reading of an already saved bill"""
        self._require(SessionState.READY)
        line = self.line(unit_id)
        if self.mode != BillingMode.EDIT or not line.is_persisted:
            raise SessionStateError(
                f"Previous reading for unit {line.unit_number} comes from meter history "
                "and can only be corrected on a saved bill",
                unit_id=str(line.unit_id),
            )
        line.previous_reading = _parse_amount(value, "previous_reading", line)
        line.regression_acknowledged = False
        line.recompute(self.rate)
        self._touch()
        return line

    def acknowledge_regression(self, unit_id) -> BillLine:
        """Accept a reading that went backwards, e.g. after a meter replacement"""
        self._require(SessionState.READY)
        line = self.line(unit_id)
        if not self.allow_regression_override:
            raise ValidationError(
                "Lower readings cannot be accepted, correct the reading instead",
                unit_id=line.unit_id, unit_number=line.unit_number, field="current_reading",
            )
        if not line.regressed:
            raise ValidationError(
                f"Current reading for unit {line.unit_number} is not lower than the previous reading",
                unit_id=line.unit_id, unit_number=line.unit_number, field="current_reading",
            )
        line.regression_acknowledged = True
        self._touch()
        return line

    # ── Saving ──────────────────────────────────────────────────────────────

    def validate(self, lines: Optional[List[BillLine]] = None) -> None:
        """Raise ValidationError for the first problem found"""
        lines = self.lines if lines is None else lines
        for line in lines:
            if line.current_reading is None:
                raise ValidationError(
                    f"Please enter current reading for unit {line.unit_number}",
                    unit_id=line.unit_id, unit_number=line.unit_number, field="current_reading",
                )
            if line.current_reading < line.previous_reading and not (
                line.regression_acknowledged and self.allow_regression_override
            ):
                raise ValidationError(
                    f"Current reading for unit {line.unit_number} cannot be less than previous reading",
                    unit_id=line.unit_id, unit_number=line.unit_number, field="current_reading",
                )
            if line.arrears_bf < 0:
                raise ValidationError(
                    f"Arrears for unit {line.unit_number} cannot be negative",
                    unit_id=line.unit_id, unit_number=line.unit_number, field="arrears_bf",
                )
        if self.period is None:
            raise ValidationError("Please select billing month", field="billing_period")
        if not self.rate or self.rate <= 0:
            raise ValidationError("Please enter a valid rate", field="rate")
        if not lines:
            raise ValidationError("There are no units to bill for this property")

    async def save(self, persister: BillPersister, only_failed: bool = False) -> PersistResult:
        """
        Validate and write the session's lines.

        Returns the persist result. When some lines failed the session goes
        back to READY with a PartialPersistError attached, and
        ``only_failed=True`` re-submits just those units.
        """
        self._require(SessionState.READY)
        if only_failed:
            if not self.failed_unit_ids:
                raise SessionStateError("There are no failed bills to retry")
            lines = [line for line in self.lines if line.unit_id in self.failed_unit_ids]
        else:
            lines = list(self.lines)

        self.validate(lines)
        # Every written row carries the session rate, so untouched lines follow it too
        for line in lines:
            line.recompute(self.rate)

        self.state = SessionState.SAVING
        self._touch()
        try:
            result = await persister.persist(self.period, self.rate, lines)
        except BillingError as exc:
            self.state = SessionState.READY
            self.error = exc
            raise

        # Saved lines now point at their rows, so the next save updates them
        by_unit = {line.unit_id: line for line in lines}
        for saved in result.succeeded:
            line = by_unit[saved.unit_id]
            line.bill_id = saved.bill.id
            line.version = saved.bill.version
            self.failed_unit_ids.discard(saved.unit_id)

        self.last_result = result
        if result.failed:
            self.failed_unit_ids.update(f.unit_id for f in result.failed)
            self.error = PartialPersistError(result)
            self.state = SessionState.READY
            logger.warning(f"[BILLING] Session {self.id}: {self.error.message}")
        else:
            self.failed_unit_ids = set()
            self.error = None
            self.mode = BillingMode.EDIT
            self.state = SessionState.SAVED
            logger.info(f"[BILLING] Session {self.id} saved {len(result.succeeded)} bill(s)")
        self._touch()
        return result

    # ── Views ───────────────────────────────────────────────────────────────

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.id,
            state=self.state,
            mode=self.mode,
            property_id=self.property_id,
            billing_period=self.period,
            rate=self.rate,
            lines=tuple(line.to_dict() for line in self.lines),
            warnings=tuple(dict(w) for w in self.warnings),
            failed_unit_ids=tuple(str(u) for u in self.failed_unit_ids),
            error=self.error.to_dict() if self.error else None,
            total_units_consumed=sum(line.units_consumed for line in self.lines),
            total_amount=sum(line.total_amount for line in self.lines),
            updated_at=self.updated_at,
        )
