from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from gatehouse.logging import get_logger
from gatehouse.service.audit import SessionContext
from gatehouse.service.credentials import IdentityStore
from gatehouse.service.errors import AdminSessionRequired, ForbiddenError
from gatehouse.service.sessions import SessionLifecycle

logger = get_logger(__name__)


class AdminRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ATTORNEY_ADMIN = "attorney_admin"

    def satisfies(self, required: Optional["AdminRole"]) -> bool:
        if required is None or self == AdminRole.SUPER_ADMIN:
            return True
        return self == required


@dataclass(frozen=True)
class AdminPrincipal:
    session_id: str
    user_id: str
    email: str
    admin_role: AdminRole
    last_activity: datetime
    expires_at: datetime


@dataclass(frozen=True)
class GuardDecision:
    principal: AdminPrincipal
    cookie_value: str


def _parse_sub_role(value: Optional[str]) -> AdminRole:
    # Admins created before sub-roles existed hold full access
    if not value:
        return AdminRole.SUPER_ADMIN
    return AdminRole(value)


class AdminAuthGuard:
    """Answers whether a request carries a live session for an admin with the needed sub-role."""

    def __init__(self, lifecycle: SessionLifecycle, identities: IdentityStore) -> None:
        self.lifecycle = lifecycle
        self.identities = identities

    async def authorize(
        self,
        cookie: Optional[str],
        context: Optional[SessionContext] = None,
        *,
        required_role: Optional[AdminRole] = None,
    ) -> GuardDecision:
        check = await self.lifecycle.validate(cookie, context)
        if not check.authenticated:
            raise AdminSessionRequired(
                outcome=check.outcome.value, clear_cookie=check.clear_cookie
            )
        session = check.session
        user = self.identities.get_user(session.user_id)
        if not user or not user.is_active or user.role != "admin":
            logger.warning(
                "admin_guard_role_revoked",
                session_id=session.id,
                user_id=session.user_id,
            )
            # Demotion ends the session; validate has already touched the row
            await self.lifecycle.revoke_session(
                session, reason="role-revoked", context=context
            )
            raise AdminSessionRequired(outcome="role_revoked", clear_cookie=True)
        try:
            role = _parse_sub_role(user.admin_sub_role)
        except ValueError:
            logger.warning(
                "admin_guard_unknown_sub_role",
                user_id=user.id,
                admin_sub_role=user.admin_sub_role,
            )
            raise ForbiddenError("admin role not recognised")
        if not role.satisfies(required_role):
            logger.info(
                "admin_guard_forbidden",
                user_id=user.id,
                admin_role=role.value,
                required_role=required_role.value if required_role else None,
            )
            raise ForbiddenError(
                "insufficient admin role",
                detail={"required_role": required_role.value if required_role else None},
            )
        principal = AdminPrincipal(
            session_id=session.id,
            user_id=session.user_id,
            email=session.email,
            admin_role=role,
            last_activity=session.last_activity,
            expires_at=session.expires_at,
        )
        return GuardDecision(principal=principal, cookie_value=check.cookie_value)


__all__ = ["AdminAuthGuard", "AdminPrincipal", "AdminRole", "GuardDecision"]
