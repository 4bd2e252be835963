from __future__ import annotations

import asyncio
import threading
from typing import Optional, Set
from urllib.parse import urlparse, urlunparse

from gatehouse.config import get_settings, reset_settings_cache
from gatehouse.logging import get_logger
from gatehouse.service.audit import AuditLog
from gatehouse.service.config_check import check_admin_config
from gatehouse.service.credentials import CredentialVerifier
from gatehouse.service.crypto import CryptoConfig, TokenCrypto
from gatehouse.service.guard import AdminAuthGuard
from gatehouse.service.sessions import SessionLifecycle
from gatehouse.storage.memory import MemoryStore
from gatehouse.storage.postgres import PostgresStore
from gatehouse.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of a URL with '***' for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
            logger.info("runtime_store_initialized", store_type=store_type)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache: Optional[RedisCache] = None
        if self.settings.redis_url:
            try:
                cache = RedisCache(self.settings.redis_url)
                cache.verify_connection()
                self.cache = cache
            except Exception as exc:
                logger.warning(
                    "redis_unavailable_rate_gate_open",
                    redis_url=_mask_url_password(self.settings.redis_url),
                    error=str(exc),
                )

        self.admin_config = check_admin_config(self.settings)
        self.crypto = TokenCrypto(CryptoConfig.from_settings(self.settings))
        self.audit = AuditLog(self.store)
        self.sessions = SessionLifecycle.from_settings(
            self.settings, self.store, self.crypto, self.audit
        )
        self.credentials = CredentialVerifier(self.store, self.settings.admin_portal_key)
        self.guard = AdminAuthGuard(self.sessions, self.store)

        logger.info(
            "runtime_initialized",
            store_type=store_type,
            redis_enabled=self.cache is not None,
            admin_sessions_configured=self.crypto.configured,
            admin_config_valid=self.admin_config.is_valid,
        )


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton using double-checked locking."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


_pending_closes: Set["asyncio.Task[None]"] = set()


def _on_close_done(task: "asyncio.Task[None]") -> None:
    _pending_closes.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.debug("runtime_cache_close_failed", error=str(task.exception()))


def _close_cache(cache: RedisCache) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        asyncio.run(cache.close())
    else:
        # Hold a reference until the close finishes so its outcome is collected
        task = loop.create_task(cache.close())
        _pending_closes.add(task)
        task.add_done_callback(_on_close_done)


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and runtime.cache is not None:
            try:
                _close_cache(runtime.cache)
            except Exception as exc:
                logger.debug("runtime_cache_close_failed", error=str(exc))

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime


async def check_rate_limit(
    runtime: Runtime, key: str, limit: int, window_seconds: int
) -> bool:
    """Consult the Redis token bucket; the gate stays open without Redis."""
    if limit <= 0 or runtime.cache is None:
        return True
    if window_seconds <= 0:
        logger.warning(
            "rate_limit_invalid_window", key=key, window_seconds=window_seconds
        )
        window_seconds = 60
    try:
        return await runtime.cache.check_rate_limit(key, limit, window_seconds)
    except Exception as exc:
        logger.warning("rate_limit_check_failed", key=key, error=str(exc))
        return True
