"""Unit tests for admin credential verification."""

import pytest

from gatehouse.service.credentials import PASSWORD_ALGO, CredentialVerifier
from gatehouse.service.errors import AuthenticationError
from gatehouse.storage.memory import MemoryStore

PORTAL_KEY = "portal-key-for-unit-tests-0001"
PASSWORD = "Admin-Passw0rd-For-Tests!"


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def verifier(store):
    return CredentialVerifier(store, PORTAL_KEY)


@pytest.fixture
def admin(store, verifier):
    user = store.create_user("admin@example.com", role="admin", admin_sub_role="super_admin")
    verifier.set_password(user.id, PASSWORD)
    return user


class TestPasswordHashing:
    def test_hash_is_argon2id(self, verifier):
        digest, algo = verifier.hash_password(PASSWORD)
        assert algo == PASSWORD_ALGO
        assert digest.startswith("$argon2id$")
        assert PASSWORD not in digest

    def test_set_password_stores_record(self, store, admin):
        digest, algo = store.get_password_record(admin.id)
        assert algo == "argon2id"
        assert digest.startswith("$argon2id$")

    def test_unknown_algorithm_rejected(self, store, verifier, admin):
        store.save_password(admin.id, "plain", "md5")
        assert verifier.verify_password(admin.id, "plain") is False


class TestVerify:
    def test_valid_triple(self, verifier, admin):
        verified = verifier.verify(admin.email, PASSWORD, PORTAL_KEY)
        assert verified.user_id == admin.id
        assert verified.email == admin.email

    @pytest.mark.parametrize("portal_key", ["", "wrong-portal-key", None, PORTAL_KEY + "x"])
    def test_bad_portal_key(self, verifier, admin, portal_key):
        with pytest.raises(AuthenticationError, match="portal key"):
            verifier.verify(admin.email, PASSWORD, portal_key)

    def test_portal_key_not_configured(self, store, admin):
        verifier = CredentialVerifier(store, None)
        with pytest.raises(AuthenticationError, match="portal key"):
            verifier.verify(admin.email, PASSWORD, "")

    def test_wrong_password(self, verifier, admin):
        with pytest.raises(AuthenticationError, match="email or password"):
            verifier.verify(admin.email, "not-the-password", PORTAL_KEY)

    def test_unknown_email(self, verifier, admin):
        with pytest.raises(AuthenticationError, match="email or password"):
            verifier.verify("nobody@example.com", PASSWORD, PORTAL_KEY)

    def test_non_admin_rejected(self, store, verifier):
        user = store.create_user("member@example.com", role="subscriber")
        verifier.set_password(user.id, PASSWORD)
        with pytest.raises(AuthenticationError, match="admin privileges"):
            verifier.verify(user.email, PASSWORD, PORTAL_KEY)

    def test_inactive_admin_rejected(self, store, verifier, admin):
        store.set_user_active(admin.id, False)
        with pytest.raises(AuthenticationError, match="admin privileges"):
            verifier.verify(admin.email, PASSWORD, PORTAL_KEY)
