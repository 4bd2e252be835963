import importlib.util
from pathlib import Path

import pytest

from gatehouse.service.errors import AuthenticationError
from gatehouse.service.runtime import get_runtime

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "bootstrap_admin.py"
PORTAL_KEY = "test-portal-key-0123456789"


@pytest.fixture(scope="module")
def script():
    loader_spec = importlib.util.spec_from_file_location("bootstrap_admin", SCRIPT)
    module = importlib.util.module_from_spec(loader_spec)
    loader_spec.loader.exec_module(module)
    return module


@pytest.mark.parametrize(
    "password,ok",
    [("Short1!", False), ("alllowercaseletters", False), ("Longer-Passw0rd", True)],
)
def test_validate_password(script, password, ok):
    assert script.validate_password(password) is ok


def test_creates_admin_that_can_sign_in(script):
    result = script.bootstrap_admin(
        "New.Admin@Example.com", "Bootstrap-Passw0rd!", "attorney_admin"
    )
    assert result["status"] == "created"
    assert result["email"] == "new.admin@example.com"

    runtime = get_runtime()
    user = runtime.store.get_user(result["user_id"])
    assert user.role == "admin"
    assert user.admin_sub_role == "attorney_admin"
    verified = runtime.credentials.verify(
        "new.admin@example.com", "Bootstrap-Passw0rd!", PORTAL_KEY
    )
    assert verified.user_id == user.id


def test_promotes_existing_profile(script):
    runtime = get_runtime()
    member = runtime.store.create_user("member@example.com", role="subscriber")
    result = script.bootstrap_admin("member@example.com", "Bootstrap-Passw0rd!")
    assert result == {
        "user_id": member.id,
        "email": "member@example.com",
        "admin_sub_role": "super_admin",
        "status": "promoted",
    }
    result = script.bootstrap_admin("member@example.com", "Another-Passw0rd!")
    assert result["status"] == "password_reset"
    with pytest.raises(AuthenticationError):
        runtime.credentials.verify("member@example.com", "Bootstrap-Passw0rd!", PORTAL_KEY)


def test_dry_run_changes_nothing(script):
    result = script.bootstrap_admin("ghost@example.com", "Bootstrap-Passw0rd!", dry_run=True)
    assert result["status"] == "dry_run"
    assert get_runtime().store.get_user_by_email("ghost@example.com") is None


def test_main_rejects_weak_password(script):
    assert script.main(["--email", "a@example.com", "--password", "weak"]) == 1
