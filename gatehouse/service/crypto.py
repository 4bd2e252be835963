"""Token generation, hashing and HMAC signing for admin session cookies.

A cookie value is ``<raw token hex>.<signature hex>``. Only the SHA-256 digest
of the raw token is persisted; the signature proves the token was minted by a
holder of ``ADMIN_SESSION_SECRET`` before any store lookup happens.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Optional, Tuple

from gatehouse.config import Settings
from gatehouse.service.errors import ConfigurationError

_SIGNATURE_HEX_LENGTH = hashlib.sha256().digest_size * 2
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


@dataclass(frozen=True)
class CryptoConfig:
    secret: Optional[str]
    token_bytes: int = 32

    @classmethod
    def from_settings(cls, settings: Settings) -> "CryptoConfig":
        return cls(
            secret=settings.admin_session_secret,
            token_bytes=settings.admin_session_token_bytes,
        )

    @property
    def configured(self) -> bool:
        return bool(self.secret)

    def __repr__(self) -> str:
        return f"CryptoConfig(secret={'set' if self.secret else None}, token_bytes={self.token_bytes})"


def _is_hex(value: str) -> bool:
    return bool(value) and all(ch in _HEX_DIGITS for ch in value)


class TokenCrypto:
    """Stateless helper around a :class:`CryptoConfig`."""

    def __init__(self, config: CryptoConfig) -> None:
        self.config = config

    @property
    def configured(self) -> bool:
        return self.config.configured

    def _require_secret(self) -> bytes:
        if not self.config.secret:
            raise ConfigurationError("admin session secret is not configured")
        return self.config.secret.encode("utf-8")

    def generate_token(self, size: Optional[int] = None) -> str:
        return secrets.token_hex(size or self.config.token_bytes)

    @staticmethod
    def hash_token(raw: str) -> str:
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def sign(self, raw: str) -> str:
        key = self._require_secret()
        return hmac.new(key, raw.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify(self, raw: str, signature: str) -> bool:
        expected = self.sign(raw)
        if len(signature) != _SIGNATURE_HEX_LENGTH or not _is_hex(signature):
            return False
        return hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii"))

    def seal(self, raw: str) -> str:
        return f"{raw}.{self.sign(raw)}"

    @staticmethod
    def unseal(cookie: str) -> Optional[Tuple[str, str]]:
        """Split a cookie into ``(raw, signature)``; ``None`` when malformed."""

        parts = cookie.split(".")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            return None
        return parts[0], parts[1]


__all__ = ["CryptoConfig", "TokenCrypto"]
