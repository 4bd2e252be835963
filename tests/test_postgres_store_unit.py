from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import psycopg
import pytest
from psycopg import errors

from gatehouse.logging import get_logger
from gatehouse.service.audit import AuditLog
from gatehouse.service.crypto import CryptoConfig, TokenCrypto
from gatehouse.service.sessions import SessionLifecycle, SessionOutcome
from gatehouse.storage.errors import ConstraintViolation, StoreUnavailable
from gatehouse.storage.models import AdminSession, AuditEntry
from gatehouse.storage.postgres import PostgresStore

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FakeResult:
    def __init__(self, rows=None, rowcount=0):
        self.rows = rows or []
        self.rowcount = rowcount

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return list(self.rows)


class FakeConnection:
    def __init__(self, results=None, error=None):
        self.results = list(results or [])
        self.error = error
        self.executed = []

    def execute(self, sql, params=None):
        self.executed.append((" ".join(sql.split()), params))
        if self.error is not None:
            raise self.error
        return self.results.pop(0) if self.results else FakeResult()


class FakePool:
    def __init__(self, conn=None, error=None):
        self.conn = conn
        self.error = error

    @contextmanager
    def connection(self):
        if self.error is not None:
            raise self.error
        yield self.conn


def _store(conn=None, pool_error=None) -> PostgresStore:
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    store.dsn = "postgresql://unused"
    store.logger = get_logger("test")
    store.pool = FakePool(conn, pool_error)
    return store


def _session_row(**overrides):
    row = {
        "id": "3f1f6c1e-0000-4000-8000-000000000001",
        "user_id": "3f1f6c1e-0000-4000-8000-0000000000aa",
        "email": "admin@example.com",
        "session_token_hash": "a" * 64,
        "created_at": NOW,
        "last_activity": NOW,
        "expires_at": NOW + timedelta(hours=24),
        "revoked_at": None,
        "ip_address": "10.0.0.1",
        "user_agent": "pytest",
    }
    row.update(overrides)
    return row


def test_find_by_hash_maps_row():
    conn = FakeConnection([FakeResult([_session_row()])])
    session = _store(conn).find_admin_session_by_hash("a" * 64)
    assert session.token_hash == "a" * 64
    assert session.expires_at == NOW + timedelta(hours=24)
    sql, params = conn.executed[0]
    assert "WHERE session_token_hash = %s" in sql
    assert params == ("a" * 64,)


def test_find_by_hash_missing_row():
    conn = FakeConnection([FakeResult([])])
    assert _store(conn).find_admin_session_by_hash("b" * 64) is None


def test_insert_unique_violation_maps_to_constraint():
    conn = FakeConnection(error=errors.UniqueViolation("duplicate key"))
    session = AdminSession.new(
        "u1", "admin@example.com", "a" * 64, now=NOW, absolute_ttl=timedelta(hours=1)
    )
    with pytest.raises(ConstraintViolation):
        _store(conn).insert_admin_session(session)


def test_insert_requires_token_hash():
    conn = FakeConnection()
    session = AdminSession.new(
        "u1", "admin@example.com", "", now=NOW, absolute_ttl=timedelta(hours=1)
    )
    with pytest.raises(ConstraintViolation):
        _store(conn).insert_admin_session(session)
    assert conn.executed == []


def test_operational_error_maps_to_store_unavailable():
    store = _store(pool_error=psycopg.OperationalError("connection refused"))
    with pytest.raises(StoreUnavailable):
        store.find_admin_session_by_hash("a" * 64)


def test_closed_connection_maps_to_store_unavailable():
    conn = FakeConnection(error=psycopg.InterfaceError("connection already closed"))
    with pytest.raises(StoreUnavailable):
        _store(conn).find_admin_session_by_hash("a" * 64)


async def test_validate_on_closed_connection_is_unauthenticated():
    store = _store(FakeConnection(error=psycopg.InterfaceError("connection already closed")))
    crypto = TokenCrypto(CryptoConfig(secret="postgres-unit-secret-0123456789abcdef"))
    lifecycle = SessionLifecycle(
        store,
        crypto,
        AuditLog(store),
        idle_timeout=timedelta(minutes=30),
        absolute_timeout=timedelta(hours=24),
    )

    check = await lifecycle.validate(crypto.seal(crypto.generate_token()))

    assert check.outcome == SessionOutcome.STORE_UNAVAILABLE
    assert not check.authenticated
    assert check.clear_cookie is False


def test_revoke_only_unrevoked_rows():
    conn = FakeConnection([FakeResult(rowcount=1), FakeResult(rowcount=0)])
    store = _store(conn)
    assert store.revoke_admin_session("sid", at=NOW) is True
    assert store.revoke_admin_session("sid", at=NOW) is False
    sql, params = conn.executed[0]
    assert "revoked_at IS NULL" in sql
    assert params == (NOW, "sid")


def test_touch_keeps_context_when_absent():
    conn = FakeConnection()
    _store(conn).touch_admin_session("sid", at=NOW)
    sql, params = conn.executed[0]
    assert "COALESCE(%s, ip_address)" in sql
    assert params == (NOW, None, None, "sid")


def test_append_audit_serializes_metadata():
    conn = FakeConnection()
    entry = AuditEntry.new(
        "invalidated", metadata={"reason": "invalid-signature"}, created_at=NOW
    )
    _store(conn).append_admin_audit(entry)
    _, params = conn.executed[0]
    assert params[4] == "invalidated"
    assert params[7] == '{"reason": "invalid-signature"}'


def test_list_audit_builds_filters():
    row = {
        "id": "e1",
        "event": "login",
        "created_at": NOW,
        "session_id": "s1",
        "user_id": None,
        "email": None,
        "ip_address": None,
        "user_agent": None,
        "metadata": '{"reason": "x"}',
    }
    conn = FakeConnection([FakeResult([row])])
    entries = _store(conn).list_admin_audit(10, session_id="s1")
    assert entries[0].metadata == {"reason": "x"}
    sql, params = conn.executed[0]
    assert "WHERE session_id = %s" in sql
    assert params == ("s1", 10)
