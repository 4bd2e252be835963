from unittest.mock import MagicMock

import pytest

from gatehouse.service.audit import AuditEvent, AuditLog, SessionContext
from gatehouse.storage.memory import MemoryStore


def test_record_persists_entry_with_context():
    store = MemoryStore()
    audit = AuditLog(store)
    entry = audit.record(
        AuditEvent.LOGIN,
        session_id="s1",
        user_id="u1",
        email="admin@example.com",
        context=SessionContext(ip_address="10.0.0.1", user_agent="pytest"),
    )
    stored = store.list_admin_audit()
    assert entry is not None
    assert len(stored) == 1
    assert stored[0].event == "login"
    assert stored[0].ip_address == "10.0.0.1"
    assert stored[0].user_agent == "pytest"


def test_record_accepts_event_name_string():
    store = MemoryStore()
    AuditLog(store).record("invalidated", metadata={"reason": "revoked"})
    assert store.list_admin_audit()[0].metadata == {"reason": "revoked"}


def test_unknown_event_rejected():
    with pytest.raises(ValueError):
        AuditLog(MemoryStore()).record("deleted")


def test_store_failure_is_swallowed():
    store = MagicMock()
    store.append_admin_audit.side_effect = RuntimeError("disk full")
    assert AuditLog(store).record(AuditEvent.LOGOUT, session_id="s1") is None
    store.append_admin_audit.assert_called_once()
