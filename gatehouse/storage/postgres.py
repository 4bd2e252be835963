from __future__ import annotations

import json
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from gatehouse.logging import get_logger
from gatehouse.storage.errors import ConstraintViolation, StoreUnavailable
from gatehouse.storage.models import AdminSession, AuditEntry, User, utcnow

_SCHEMA_STATEMENTS = (
    'CREATE EXTENSION IF NOT EXISTS "pgcrypto"',
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        email TEXT NOT NULL UNIQUE,
        full_name TEXT,
        role TEXT NOT NULL DEFAULT 'subscriber'
            CHECK (role IN ('subscriber', 'employee', 'admin')),
        admin_sub_role TEXT CHECK (admin_sub_role IN ('super_admin', 'attorney_admin')),
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_auth_credential (
        user_id UUID PRIMARY KEY REFERENCES profiles(id) ON DELETE CASCADE,
        password_hash TEXT NOT NULL,
        password_algo TEXT NOT NULL,
        last_updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS admin_sessions (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
        email TEXT NOT NULL,
        session_token_hash TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        last_activity TIMESTAMPTZ NOT NULL DEFAULT now(),
        expires_at TIMESTAMPTZ NOT NULL,
        revoked_at TIMESTAMPTZ,
        ip_address TEXT,
        user_agent TEXT
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS admin_sessions_token_hash_idx ON admin_sessions(session_token_hash)",
    "CREATE INDEX IF NOT EXISTS admin_sessions_user_idx ON admin_sessions(user_id)",
    """
    CREATE TABLE IF NOT EXISTS admin_auth_audit (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        session_id UUID REFERENCES admin_sessions(id) ON DELETE SET NULL,
        user_id UUID REFERENCES profiles(id) ON DELETE SET NULL,
        email TEXT,
        event TEXT NOT NULL
            CHECK (event IN ('login', 'logout', 'revoked', 'expired', 'invalidated')),
        ip_address TEXT,
        user_agent TEXT,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS admin_auth_audit_created_idx ON admin_auth_audit(created_at DESC)",
)


class PostgresStore:
    """Postgres-backed store for admin sessions, the auth audit trail and profiles."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[psycopg.Connection]:
        try:
            with self.pool.connection() as conn:
                yield conn
        except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
            # PoolTimeout is an OperationalError; a closed connection raises InterfaceError
            self.logger.warning("postgres_unavailable", error=str(exc))
            raise StoreUnavailable("database unavailable") from exc

    def _ensure_schema(self) -> None:
        """Create the admin session tables and indexes if they are missing."""

        with self._connect() as conn:
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(statement)

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    # profiles
    def create_user(
        self,
        email: str,
        *,
        role: str = "subscriber",
        admin_sub_role: Optional[str] = None,
        full_name: Optional[str] = None,
        is_active: bool = True,
    ) -> User:
        user_id = str(uuid.uuid4())
        sub_role = admin_sub_role if role == "admin" else None
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO profiles (id, email, full_name, role, admin_sub_role, is_active)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING created_at
                    """,
                    (user_id, email, full_name, role, sub_role, is_active),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return User(
            id=user_id,
            email=email,
            role=role,
            admin_sub_role=sub_role,
            full_name=full_name,
            is_active=is_active,
            created_at=(row or {}).get("created_at") or utcnow(),
        )

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM profiles WHERE id = %s", (user_id,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM profiles WHERE email = %s", (email,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def update_user_role(
        self, user_id: str, role: str, admin_sub_role: Optional[str] = None
    ) -> Optional[User]:
        sub_role = admin_sub_role if role == "admin" else None
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE profiles SET role = %s, admin_sub_role = %s WHERE id = %s RETURNING *",
                (role, sub_role, user_id),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def set_user_active(self, user_id: str, is_active: bool) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE profiles SET is_active = %s WHERE id = %s RETURNING *",
                (is_active, user_id),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO user_auth_credential (user_id, password_hash, password_algo, last_updated_at)
                    VALUES (%s, %s, %s, now())
                    ON CONFLICT (user_id) DO UPDATE
                    SET password_hash = EXCLUDED.password_hash,
                        password_algo = EXCLUDED.password_algo,
                        last_updated_at = now()
                    """,
                    (user_id, password_hash, password_algo),
                )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation(
                "user not found for credentials", {"user_id": user_id}
            )

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT password_hash, password_algo FROM user_auth_credential WHERE user_id = %s",
                (user_id,),
            ).fetchone()
        if not row:
            return None
        return str(row["password_hash"]), str(row["password_algo"])

    # admin sessions
    def insert_admin_session(self, session: AdminSession) -> str:
        if not session.user_id or not session.email or not session.token_hash:
            raise ConstraintViolation(
                "admin session requires user_id, email and token hash",
                {"user_id": session.user_id},
            )
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO admin_sessions (
                        id, user_id, email, session_token_hash, created_at,
                        last_activity, expires_at, ip_address, user_agent
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        session.id,
                        session.user_id,
                        session.email,
                        session.token_hash,
                        session.created_at,
                        session.last_activity,
                        session.expires_at,
                        session.ip_address,
                        session.user_agent,
                    ),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation(
                "session token hash already exists", {"field": "session_token_hash"}
            )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation(
                "admin session user missing", {"user_id": session.user_id}
            )
        return session.id

    def get_admin_session(self, session_id: str) -> Optional[AdminSession]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM admin_sessions WHERE id = %s", (session_id,)
            ).fetchone()
        return self._session_from_row(row) if row else None

    def find_admin_session_by_hash(self, token_hash: str) -> Optional[AdminSession]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM admin_sessions WHERE session_token_hash = %s",
                (token_hash,),
            ).fetchone()
        return self._session_from_row(row) if row else None

    def touch_admin_session(
        self,
        session_id: str,
        *,
        at: Optional[datetime] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE admin_sessions
                SET last_activity = %s,
                    ip_address = COALESCE(%s, ip_address),
                    user_agent = COALESCE(%s, user_agent)
                WHERE id = %s
                """,
                (at or utcnow(), ip_address, user_agent, session_id),
            )

    def revoke_admin_session(
        self, session_id: str, *, at: Optional[datetime] = None
    ) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE admin_sessions SET revoked_at = %s WHERE id = %s AND revoked_at IS NULL",
                (at or utcnow(), session_id),
            )
            return result.rowcount > 0

    def revoke_user_admin_sessions(
        self, user_id: str, *, at: Optional[datetime] = None
    ) -> List[AdminSession]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                UPDATE admin_sessions SET revoked_at = %s
                WHERE user_id = %s AND revoked_at IS NULL
                RETURNING *
                """,
                (at or utcnow(), user_id),
            ).fetchall()
        return [self._session_from_row(row) for row in rows]

    # audit
    def append_admin_audit(self, entry: AuditEntry) -> AuditEntry:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO admin_auth_audit (
                    id, session_id, user_id, email, event, ip_address,
                    user_agent, metadata, created_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    entry.id,
                    entry.session_id,
                    entry.user_id,
                    entry.email,
                    entry.event,
                    entry.ip_address,
                    entry.user_agent,
                    json.dumps(entry.metadata or {}),
                    entry.created_at,
                ),
            )
        return entry

    def list_admin_audit(
        self,
        limit: int = 100,
        *,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> List[AuditEntry]:
        clauses: List[str] = []
        params: List[Any] = []
        if session_id is not None:
            clauses.append("session_id = %s")
            params.append(session_id)
        if user_id is not None:
            clauses.append("user_id = %s")
            params.append(user_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM admin_auth_audit {where} ORDER BY created_at DESC LIMIT %s",
                tuple(params),
            ).fetchall()
        return [self._audit_from_row(row) for row in rows]

    # row mapping
    @staticmethod
    def _user_from_row(row: Dict[str, Any]) -> User:
        return User(
            id=str(row["id"]),
            email=row["email"],
            role=row.get("role", "subscriber"),
            admin_sub_role=row.get("admin_sub_role"),
            full_name=row.get("full_name"),
            is_active=row.get("is_active", True),
            created_at=row.get("created_at") or utcnow(),
        )

    @staticmethod
    def _session_from_row(row: Dict[str, Any]) -> AdminSession:
        return AdminSession(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            email=row["email"],
            token_hash=row["session_token_hash"],
            created_at=row["created_at"],
            last_activity=row["last_activity"],
            expires_at=row["expires_at"],
            revoked_at=row.get("revoked_at"),
            ip_address=row.get("ip_address"),
            user_agent=row.get("user_agent"),
        )

    @staticmethod
    def _audit_from_row(row: Dict[str, Any]) -> AuditEntry:
        metadata = row.get("metadata") or {}
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except ValueError:
                metadata = {}
        return AuditEntry(
            id=str(row["id"]),
            event=row["event"],
            created_at=row["created_at"],
            session_id=str(row["session_id"]) if row.get("session_id") else None,
            user_id=str(row["user_id"]) if row.get("user_id") else None,
            email=row.get("email"),
            ip_address=row.get("ip_address"),
            user_agent=row.get("user_agent"),
            metadata=metadata,
        )
