from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: str
    email: str
    role: str = "subscriber"
    admin_sub_role: Optional[str] = None
    full_name: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class AdminSession:
    """Server-side admin session row. Only the hash of the raw token is kept."""

    id: str
    user_id: str
    email: str
    token_hash: str
    created_at: datetime
    last_activity: datetime
    expires_at: datetime
    revoked_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def new(
        cls,
        user_id: str,
        email: str,
        token_hash: str,
        *,
        now: datetime,
        absolute_ttl: timedelta,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> "AdminSession":
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            email=email,
            token_hash=token_hash,
            created_at=now,
            last_activity=now,
            expires_at=now + absolute_ttl,
            ip_address=ip_address,
            user_agent=user_agent,
        )


@dataclass
class AuditEntry:
    id: str
    event: str
    created_at: datetime
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Dict = field(default_factory=dict)

    @classmethod
    def new(
        cls,
        event: str,
        *,
        session_id: str | None = None,
        user_id: str | None = None,
        email: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        metadata: Dict | None = None,
        created_at: datetime | None = None,
    ) -> "AuditEntry":
        return cls(
            id=str(uuid.uuid4()),
            event=event,
            created_at=created_at or utcnow(),
            session_id=session_id,
            user_id=user_id,
            email=email,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata=dict(metadata or {}),
        )
