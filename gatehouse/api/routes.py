from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request, Response

from gatehouse.api.error_handling import clear_admin_cookie
from gatehouse.api.schemas import (
    AdminLoginRequest,
    AdminLoginResponse,
    AdminSessionResponse,
    AuditEntryResponse,
    AuditListResponse,
    Envelope,
    SessionRevocationResponse,
)
from gatehouse.config import ADMIN_SESSION_COOKIE
from gatehouse.logging import get_logger
from gatehouse.service.audit import SessionContext
from gatehouse.service.errors import NotFoundError, RateLimitedError
from gatehouse.service.guard import AdminPrincipal, AdminRole
from gatehouse.service.runtime import check_rate_limit, get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def request_context(request: Request) -> SessionContext:
    forwarded_for = request.headers.get("x-forwarded-for")
    ip_address = None
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip() or None
    if not ip_address and request.client:
        ip_address = request.client.host
    return SessionContext(
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent") or None,
    )


def set_admin_cookie(response: Response, value: str) -> None:
    runtime = get_runtime()
    response.set_cookie(
        ADMIN_SESSION_COOKIE,
        value,
        max_age=runtime.sessions.cookie_max_age,
        path="/",
        secure=runtime.settings.secure_cookies,
        httponly=True,
        samesite="lax",
    )


async def _authorize(
    request: Request, response: Response, required_role: Optional[AdminRole]
) -> AdminPrincipal:
    runtime = get_runtime()
    decision = await runtime.guard.authorize(
        request.cookies.get(ADMIN_SESSION_COOKIE),
        request_context(request),
        required_role=required_role,
    )
    set_admin_cookie(response, decision.cookie_value)
    return decision.principal


async def require_admin(request: Request, response: Response) -> AdminPrincipal:
    """Dependency for routes open to any authenticated admin."""
    return await _authorize(request, response, None)


async def require_super_admin(request: Request, response: Response) -> AdminPrincipal:
    return await _authorize(request, response, AdminRole.SUPER_ADMIN)


async def require_attorney_admin(request: Request, response: Response) -> AdminPrincipal:
    return await _authorize(request, response, AdminRole.ATTORNEY_ADMIN)


@router.post("/admin-auth/login", response_model=Envelope, tags=["admin-auth"])
async def admin_login(body: AdminLoginRequest, request: Request, response: Response):
    """Exchange admin credentials and the portal key for a session cookie.

    Raises:
        401: If the portal key, credentials or admin role do not check out
        429: If the login rate gate is exhausted for this client
        500: If the session secret is not configured
    """
    runtime = get_runtime()
    ctx = request_context(request)
    allowed = await check_rate_limit(
        runtime,
        f"admin-login:{ctx.ip_address or 'unknown'}",
        runtime.settings.admin_login_rate_limit,
        runtime.settings.admin_login_rate_limit_window_seconds,
    )
    if not allowed:
        logger.warning("admin_login_rate_limited")
        raise RateLimitedError("too many login attempts")

    verified = runtime.credentials.verify(body.email, body.password, body.portal_key)
    issued = await runtime.sessions.issue(verified.user_id, verified.email, ctx)
    set_admin_cookie(response, issued.cookie_value)
    return Envelope(
        status="ok",
        data=AdminLoginResponse(
            user_id=verified.user_id,
            email=verified.email,
            session_id=issued.session.id,
            expires_at=issued.session.expires_at,
        ),
    )


@router.post("/admin-auth/logout", response_model=Envelope, tags=["admin-auth"])
async def admin_logout(request: Request, response: Response):
    runtime = get_runtime()
    revoked = await runtime.sessions.terminate(
        request.cookies.get(ADMIN_SESSION_COOKIE), request_context(request)
    )
    clear_admin_cookie(response)
    return Envelope(status="ok", data={"revoked": revoked})


@router.get("/admin-auth/session", response_model=Envelope, tags=["admin-auth"])
async def admin_session(principal: AdminPrincipal = Depends(require_admin)):
    return Envelope(
        status="ok",
        data=AdminSessionResponse(
            session_id=principal.session_id,
            user_id=principal.user_id,
            email=principal.email,
            admin_role=principal.admin_role.value,
            last_activity=principal.last_activity,
            expires_at=principal.expires_at,
        ),
    )


@router.post(
    "/admin/users/{user_id}/sessions/revoke",
    response_model=Envelope,
    tags=["admin"],
)
async def revoke_user_sessions(
    request: Request,
    user_id: uuid.UUID = Path(...),
    principal: AdminPrincipal = Depends(require_super_admin),
):
    runtime = get_runtime()
    target_id = str(user_id)
    if not runtime.store.get_user(target_id):
        raise NotFoundError("user not found", detail={"user_id": target_id})
    revoked = await runtime.sessions.revoke_user_sessions(
        target_id, actor_id=principal.user_id, context=request_context(request)
    )
    return Envelope(
        status="ok", data=SessionRevocationResponse(user_id=target_id, revoked=revoked)
    )


@router.get("/admin/audit", response_model=Envelope, tags=["admin"])
async def list_audit(
    limit: int = Query(50, ge=1, le=500),
    user_id: Optional[uuid.UUID] = Query(None),
    session_id: Optional[uuid.UUID] = Query(None),
    principal: AdminPrincipal = Depends(require_super_admin),
):
    runtime = get_runtime()
    entries = runtime.store.list_admin_audit(
        limit,
        session_id=str(session_id) if session_id else None,
        user_id=str(user_id) if user_id else None,
    )
    items = [
        AuditEntryResponse(
            id=entry.id,
            event=entry.event,
            created_at=entry.created_at,
            session_id=entry.session_id,
            user_id=entry.user_id,
            email=entry.email,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            metadata=entry.metadata or {},
        )
        for entry in entries
    ]
    return Envelope(status="ok", data=AuditListResponse(items=items))
