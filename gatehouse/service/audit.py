from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from gatehouse.logging import get_logger
from gatehouse.storage.models import AuditEntry

logger = get_logger(__name__)


class AuditEvent(str, Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    EXPIRED = "expired"
    REVOKED = "revoked"
    INVALIDATED = "invalidated"


@dataclass(frozen=True)
class SessionContext:
    """Client attributes recorded alongside sessions and audit entries."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class AuditLog:
    """Append-only recorder of admin authentication events.

    Recording never raises: a failed insert is logged and the caller's
    outcome stands.
    """

    def __init__(self, store, *, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock

    def record(
        self,
        event: AuditEvent | str,
        *,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        context: Optional[SessionContext] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditEntry]:
        event_name = AuditEvent(event).value
        ctx = context or SessionContext()
        entry = AuditEntry.new(
            event_name,
            session_id=session_id,
            user_id=user_id,
            email=email,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            metadata=metadata,
            created_at=self._clock() if self._clock else None,
        )
        try:
            return self.store.append_admin_audit(entry)
        except Exception as exc:
            logger.error(
                "admin_audit_record_failed",
                audit_event=event_name,
                session_id=session_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return None
