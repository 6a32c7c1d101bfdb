"""
In-memory registry of live billing sessions.

Sessions hold unsaved edits only, so losing them on restart loses no data.
Idle sessions expire after BILLING_SESSION_TTL_MINUTES; discarding a session
never writes anything.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from estate_billing.core.config import settings
from estate_billing.core.exceptions import NotFoundError
from estate_billing.services.billing_session import BillingSession

logger = logging.getLogger(__name__)


class BillingSessionRegistry:

    def __init__(self, ttl_minutes: Optional[int] = None):
        minutes = settings.BILLING_SESSION_TTL_MINUTES if ttl_minutes is None else ttl_minutes
        self.ttl = timedelta(minutes=minutes)
        self._sessions: Dict[str, BillingSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, owner: Optional[str] = None) -> BillingSession:
        self.purge_expired()
        session = BillingSession(owner=owner)
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str, owner: Optional[str] = None) -> BillingSession:
        session = self._sessions.get(session_id)
        if session is not None and self._expired(session):
            self.discard(session_id)
            session = None
        # Another operator's session is reported as missing
        if session is None or (owner is not None and session.owner != owner):
            raise NotFoundError("Billing session not found or expired", session_id=session_id)
        return session

    def discard(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.info(f"[BILLING] Session {session_id} discarded")

    def purge_expired(self) -> int:
        expired = [sid for sid, s in self._sessions.items() if self._expired(s)]
        for sid in expired:
            self.discard(sid)
        return len(expired)

    def _expired(self, session: BillingSession) -> bool:
        return datetime.now(timezone.utc) - session.updated_at > self.ttl


billing_sessions = BillingSessionRegistry()
