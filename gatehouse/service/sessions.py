"""Admin session lifecycle: issue, validate and terminate.

Every failure path of :meth:`SessionLifecycle.validate` resolves to an
unauthenticated :class:`SessionCheck`; callers only distinguish ``active``
from everything else. The audit trail records why.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional, Protocol

from gatehouse.config import Settings
from gatehouse.logging import get_logger
from gatehouse.service.audit import AuditEvent, AuditLog, SessionContext
from gatehouse.service.crypto import TokenCrypto
from gatehouse.service.errors import ConfigurationError
from gatehouse.storage.errors import StoreUnavailable
from gatehouse.storage.models import AdminSession

logger = get_logger(__name__)


class AdminSessionStore(Protocol):
    def insert_admin_session(self, session: AdminSession) -> str: ...

    def find_admin_session_by_hash(self, token_hash: str) -> Optional[AdminSession]: ...

    def touch_admin_session(
        self,
        session_id: str,
        *,
        at: Optional[datetime] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None: ...

    def revoke_admin_session(
        self, session_id: str, *, at: Optional[datetime] = None
    ) -> bool: ...

    def revoke_user_admin_sessions(
        self, user_id: str, *, at: Optional[datetime] = None
    ) -> List[AdminSession]: ...


class SessionOutcome(str, Enum):
    ACTIVE = "active"
    MISSING = "missing"
    NOT_CONFIGURED = "not_configured"
    MALFORMED = "malformed"
    SIGNATURE_INVALID = "signature_invalid"
    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    IDLE_EXPIRED = "idle_expired"
    ABSOLUTE_EXPIRED = "absolute_expired"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass
class SessionCheck:
    outcome: SessionOutcome
    session: Optional[AdminSession] = None
    cookie_value: Optional[str] = None
    clear_cookie: bool = False

    @property
    def authenticated(self) -> bool:
        return self.outcome == SessionOutcome.ACTIVE and self.session is not None


@dataclass
class IssuedSession:
    session: AdminSession
    cookie_value: str


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SessionLifecycle:
    """Issues, validates and terminates server-side admin sessions."""

    def __init__(
        self,
        store: AdminSessionStore,
        crypto: TokenCrypto,
        audit: AuditLog,
        *,
        idle_timeout: timedelta,
        absolute_timeout: timedelta,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if idle_timeout <= timedelta(0) or absolute_timeout <= timedelta(0):
            raise ValueError("session timeouts must be positive")
        self.store = store
        self.crypto = crypto
        self.audit = audit
        self.idle_timeout = idle_timeout
        self.absolute_timeout = absolute_timeout
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: AdminSessionStore,
        crypto: TokenCrypto,
        audit: AuditLog,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "SessionLifecycle":
        return cls(
            store,
            crypto,
            audit,
            idle_timeout=timedelta(seconds=settings.admin_session_idle_timeout_seconds),
            absolute_timeout=timedelta(
                seconds=settings.admin_session_absolute_timeout_seconds
            ),
            clock=clock,
        )

    def _now(self) -> datetime:
        if self._clock:
            return _as_utc(self._clock())
        return datetime.now(timezone.utc)

    @property
    def cookie_max_age(self) -> int:
        return int(self.idle_timeout.total_seconds())

    async def issue(
        self,
        user_id: str,
        email: str,
        context: Optional[SessionContext] = None,
    ) -> IssuedSession:
        """Persist a new session for a verified admin and return its cookie value."""

        if not self.crypto.configured:
            logger.error("admin_session_secret_missing", user_id=user_id)
            raise ConfigurationError("admin session secret not configured")
        ctx = context or SessionContext()
        raw = self.crypto.generate_token()
        cookie_value = self.crypto.seal(raw)
        session = AdminSession.new(
            user_id,
            email,
            self.crypto.hash_token(raw),
            now=self._now(),
            absolute_ttl=self.absolute_timeout,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )
        self.store.insert_admin_session(session)
        self.audit.record(
            AuditEvent.LOGIN,
            session_id=session.id,
            user_id=user_id,
            email=email,
            context=ctx,
        )
        logger.info(
            "admin_session_issued",
            session_id=session.id,
            user_id=user_id,
            expires_at=session.expires_at.isoformat(),
        )
        return IssuedSession(session=session, cookie_value=cookie_value)

    def _invalidated(
        self,
        outcome: SessionOutcome,
        reason: str,
        context: SessionContext,
        session: Optional[AdminSession] = None,
    ) -> SessionCheck:
        self.audit.record(
            AuditEvent.INVALIDATED,
            session_id=session.id if session else None,
            user_id=session.user_id if session else None,
            email=session.email if session else None,
            context=context,
            metadata={"reason": reason},
        )
        logger.info(
            "admin_session_invalidated",
            reason=reason,
            session_id=session.id if session else None,
        )
        return SessionCheck(outcome=outcome, clear_cookie=True)

    def _expire(
        self,
        session: AdminSession,
        outcome: SessionOutcome,
        now: datetime,
        context: SessionContext,
    ) -> SessionCheck:
        reason = (
            "absolute-timeout"
            if outcome == SessionOutcome.ABSOLUTE_EXPIRED
            else "idle-timeout"
        )
        try:
            self.store.revoke_admin_session(session.id, at=now)
        except Exception as exc:
            logger.warning(
                "admin_session_expire_revoke_failed",
                session_id=session.id,
                error=str(exc),
            )
        self.audit.record(
            AuditEvent.EXPIRED,
            session_id=session.id,
            user_id=session.user_id,
            email=session.email,
            context=context,
            metadata={"reason": reason},
        )
        logger.info("admin_session_expired", session_id=session.id, reason=reason)
        return SessionCheck(outcome=outcome, clear_cookie=True)

    async def validate(
        self,
        cookie: Optional[str],
        context: Optional[SessionContext] = None,
    ) -> SessionCheck:
        """Check a presented cookie; on success refresh the session's idle clock."""

        ctx = context or SessionContext()
        if not cookie:
            return SessionCheck(outcome=SessionOutcome.MISSING)
        if not self.crypto.configured:
            logger.error("admin_session_secret_missing")
            return SessionCheck(outcome=SessionOutcome.NOT_CONFIGURED, clear_cookie=True)

        parts = self.crypto.unseal(cookie)
        if parts is None:
            logger.info("admin_session_cookie_malformed")
            return SessionCheck(outcome=SessionOutcome.MALFORMED, clear_cookie=True)
        raw, signature = parts
        if not self.crypto.verify(raw, signature):
            return self._invalidated(
                SessionOutcome.SIGNATURE_INVALID, "invalid-signature", ctx
            )

        try:
            session = self.store.find_admin_session_by_hash(self.crypto.hash_token(raw))
        except StoreUnavailable as exc:
            logger.warning("admin_session_lookup_unavailable", error=str(exc))
            return SessionCheck(outcome=SessionOutcome.STORE_UNAVAILABLE)
        if session is None:
            return self._invalidated(SessionOutcome.NOT_FOUND, "session-not-found", ctx)
        if session.revoked_at is not None:
            return self._invalidated(SessionOutcome.REVOKED, "revoked", ctx, session)

        now = self._now()
        if now >= _as_utc(session.expires_at):
            return self._expire(session, SessionOutcome.ABSOLUTE_EXPIRED, now, ctx)
        if now - _as_utc(session.last_activity) >= self.idle_timeout:
            return self._expire(session, SessionOutcome.IDLE_EXPIRED, now, ctx)

        try:
            self.store.touch_admin_session(
                session.id,
                at=now,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
            )
        except Exception as exc:
            logger.warning(
                "admin_session_touch_failed", session_id=session.id, error=str(exc)
            )
        refreshed = replace(
            session,
            last_activity=now,
            ip_address=ctx.ip_address or session.ip_address,
            user_agent=ctx.user_agent or session.user_agent,
        )
        return SessionCheck(
            outcome=SessionOutcome.ACTIVE,
            session=refreshed,
            cookie_value=self.crypto.seal(raw),
        )

    async def terminate(
        self,
        cookie: Optional[str],
        context: Optional[SessionContext] = None,
    ) -> bool:
        """Revoke the session behind ``cookie`` if there is a live one.

        The caller clears the cookie regardless of the result. Returns whether
        this call revoked a session.
        """

        ctx = context or SessionContext()
        if not cookie or not self.crypto.configured:
            return False
        parts = self.crypto.unseal(cookie)
        if parts is None or not self.crypto.verify(*parts):
            return False
        raw = parts[0]
        try:
            session = self.store.find_admin_session_by_hash(self.crypto.hash_token(raw))
            if session is None or session.revoked_at is not None:
                return False
            revoked = self.store.revoke_admin_session(session.id, at=self._now())
        except Exception as exc:
            logger.warning("admin_session_terminate_failed", error=str(exc))
            return False
        if revoked:
            self.audit.record(
                AuditEvent.LOGOUT,
                session_id=session.id,
                user_id=session.user_id,
                email=session.email,
                context=ctx,
            )
            logger.info("admin_session_terminated", session_id=session.id)
        return revoked

    async def revoke_session(
        self,
        session: AdminSession,
        *,
        reason: str,
        context: Optional[SessionContext] = None,
    ) -> bool:
        """Revoke one live session server-side; returns whether this call revoked it."""

        try:
            revoked = self.store.revoke_admin_session(session.id, at=self._now())
        except Exception as exc:
            logger.warning(
                "admin_session_revoke_failed", session_id=session.id, error=str(exc)
            )
            return False
        if revoked:
            self.audit.record(
                AuditEvent.REVOKED,
                session_id=session.id,
                user_id=session.user_id,
                email=session.email,
                context=context or SessionContext(),
                metadata={"reason": reason},
            )
            logger.info("admin_session_revoked", session_id=session.id, reason=reason)
        return revoked

    async def revoke_user_sessions(
        self,
        user_id: str,
        *,
        actor_id: Optional[str] = None,
        context: Optional[SessionContext] = None,
    ) -> int:
        """Revoke every live session of ``user_id``; returns how many were revoked."""

        ctx = context or SessionContext()
        revoked = self.store.revoke_user_admin_sessions(user_id, at=self._now())
        for session in revoked:
            self.audit.record(
                AuditEvent.REVOKED,
                session_id=session.id,
                user_id=session.user_id,
                email=session.email,
                context=ctx,
                metadata={"reason": "admin-revocation", "actor_id": actor_id},
            )
        logger.info(
            "admin_sessions_revoked",
            user_id=user_id,
            actor_id=actor_id,
            count=len(revoked),
        )
        return len(revoked)


__all__ = [
    "AdminSessionStore",
    "IssuedSession",
    "SessionCheck",
    "SessionLifecycle",
    "SessionOutcome",
]
