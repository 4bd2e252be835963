from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from gatehouse.logging import get_logger
from gatehouse.storage.errors import ConstraintViolation
from gatehouse.storage.models import AdminSession, AuditEntry, User, utcnow


class MemoryStore:
    """In-process backing store for tests and local development.

    Rows are copied on the way in and out so callers observe the same
    read-after-write semantics a database would give them.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.credentials: Dict[str, tuple[str, str]] = {}
        self.admin_sessions: Dict[str, AdminSession] = {}
        self.admin_audit: List[AuditEntry] = []
        self._sessions_by_hash: Dict[str, str] = {}
        # RLock so helpers can nest inside public operations
        self._data_lock = threading.RLock()

    def verify_connection(self) -> None:
        return None

    # identity
    def create_user(
        self,
        email: str,
        *,
        role: str = "subscriber",
        admin_sub_role: Optional[str] = None,
        full_name: Optional[str] = None,
        is_active: bool = True,
    ) -> User:
        with self._data_lock:
            if any(existing.email == email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User(
                id=str(uuid.uuid4()),
                email=email,
                role=role,
                admin_sub_role=admin_sub_role,
                full_name=full_name,
                is_active=is_active,
            )
            self.users[user.id] = user
            return replace(user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            user = next((u for u in self.users.values() if u.email == email), None)
            return replace(user) if user else None

    def update_user_role(
        self, user_id: str, role: str, admin_sub_role: Optional[str] = None
    ) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.role = role
            user.admin_sub_role = admin_sub_role if role == "admin" else None
            return replace(user)

    def set_user_active(self, user_id: str, is_active: bool) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.is_active = is_active
            return replace(user)

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation(
                    "user not found for credentials", {"user_id": user_id}
                )
            self.credentials[user_id] = (password_hash, password_algo)

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]:
        with self._data_lock:
            return self.credentials.get(user_id)

    # admin sessions
    def insert_admin_session(self, session: AdminSession) -> str:
        if not session.user_id or not session.email:
            raise ConstraintViolation(
                "admin session requires user_id and email",
                {"user_id": session.user_id},
            )
        if not session.token_hash:
            raise ConstraintViolation("admin session requires a token hash")
        with self._data_lock:
            if session.token_hash in self._sessions_by_hash:
                raise ConstraintViolation(
                    "session token hash already exists", {"field": "session_token_hash"}
                )
            if session.id in self.admin_sessions:
                raise ConstraintViolation("session id already exists", {"field": "id"})
            self.admin_sessions[session.id] = replace(session)
            self._sessions_by_hash[session.token_hash] = session.id
            return session.id

    def get_admin_session(self, session_id: str) -> Optional[AdminSession]:
        with self._data_lock:
            sess = self.admin_sessions.get(session_id)
            return replace(sess) if sess else None

    def find_admin_session_by_hash(self, token_hash: str) -> Optional[AdminSession]:
        with self._data_lock:
            session_id = self._sessions_by_hash.get(token_hash)
            if not session_id:
                return None
            return self.get_admin_session(session_id)

    def touch_admin_session(
        self,
        session_id: str,
        *,
        at: Optional[datetime] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        with self._data_lock:
            sess = self.admin_sessions.get(session_id)
            if not sess:
                return
            sess.last_activity = at or utcnow()
            if ip_address:
                sess.ip_address = ip_address
            if user_agent:
                sess.user_agent = user_agent

    def revoke_admin_session(
        self, session_id: str, *, at: Optional[datetime] = None
    ) -> bool:
        with self._data_lock:
            sess = self.admin_sessions.get(session_id)
            if not sess or sess.revoked_at is not None:
                return False
            sess.revoked_at = at or utcnow()
            return True

    def revoke_user_admin_sessions(
        self, user_id: str, *, at: Optional[datetime] = None
    ) -> List[AdminSession]:
        revoked_at = at or utcnow()
        with self._data_lock:
            revoked: List[AdminSession] = []
            for sess in self.admin_sessions.values():
                if sess.user_id == user_id and sess.revoked_at is None:
                    sess.revoked_at = revoked_at
                    revoked.append(replace(sess))
            return revoked

    # audit
    def append_admin_audit(self, entry: AuditEntry) -> AuditEntry:
        with self._data_lock:
            stored = replace(entry, metadata=dict(entry.metadata or {}))
            self.admin_audit.append(stored)
            return replace(stored)

    def list_admin_audit(
        self,
        limit: int = 100,
        *,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> List[AuditEntry]:
        with self._data_lock:
            entries = [
                e
                for e in self.admin_audit
                if (session_id is None or e.session_id == session_id)
                and (user_id is None or e.user_id == user_id)
            ]
            # newest first; append order breaks timestamp ties
            ordered = sorted(
                enumerate(entries), key=lambda pair: (pair[1].created_at, pair[0]), reverse=True
            )
            return [replace(e) for _, e in ordered[:limit]]
