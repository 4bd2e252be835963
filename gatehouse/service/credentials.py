from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from gatehouse.logging import get_logger
from gatehouse.service.errors import AuthenticationError
from gatehouse.storage.models import User

logger = get_logger(__name__)

PASSWORD_ALGO = "argon2id"


class IdentityStore(Protocol):
    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None: ...

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]: ...


@dataclass(frozen=True)
class VerifiedAdmin:
    user_id: str
    email: str


class CredentialVerifier:
    """Checks the email, password and portal key triple presented at admin login."""

    def __init__(self, store: IdentityStore, portal_key: Optional[str]) -> None:
        self.store = store
        self.portal_key = portal_key
        self._pwd_hasher = PasswordHasher(type=Type.ID)

    def _portal_key_matches(self, presented: Optional[str]) -> bool:
        if not self.portal_key or not presented:
            return False
        return hmac.compare_digest(
            self.portal_key.encode("utf-8"), presented.encode("utf-8")
        )

    def hash_password(self, password: str) -> Tuple[str, str]:
        return self._pwd_hasher.hash(password), PASSWORD_ALGO

    def set_password(self, user_id: str, password: str) -> None:
        pwd_hash, algo = self.hash_password(password)
        self.store.save_password(user_id, pwd_hash, algo)

    def verify_password(self, user_id: str, password: str) -> bool:
        record = self.store.get_password_record(user_id)
        if not record:
            logger.warning("password_record_missing", user_id=user_id)
            return False
        stored_hash, algo = record
        if algo != PASSWORD_ALGO:
            logger.warning("password_algo_mismatch", user_id=user_id, algo=algo)
            return False
        try:
            return self._pwd_hasher.verify(stored_hash, password)
        except (InvalidHash, VerifyMismatchError, VerificationError):
            logger.warning("password_verification_failed", user_id=user_id)
            return False

    def verify(self, email: str, password: str, portal_key: Optional[str]) -> VerifiedAdmin:
        if not self._portal_key_matches(portal_key):
            logger.warning("admin_login_portal_key_rejected")
            raise AuthenticationError("invalid admin portal key")

        user = self.store.get_user_by_email(email.strip()) if email else None
        if not user or not self.verify_password(user.id, password):
            raise AuthenticationError("invalid email or password")

        if not user.is_active or user.role != "admin":
            logger.warning("admin_login_role_rejected", user_id=user.id, role=user.role)
            raise AuthenticationError("admin privileges required")

        return VerifiedAdmin(user_id=user.id, email=user.email)


__all__ = ["CredentialVerifier", "IdentityStore", "VerifiedAdmin", "PASSWORD_ALGO"]
