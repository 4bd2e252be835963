from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from gatehouse.api.error_handling import register_exception_handlers
from gatehouse.api.routes import router
from gatehouse.logging import get_logger, set_correlation_id
from gatehouse.service.config_check import validate_and_log_admin_config

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate admin configuration and build the runtime before serving."""
    from gatehouse.service.runtime import get_runtime

    runtime = get_runtime()
    # Raises in production when the admin configuration is unusable
    validate_and_log_admin_config(runtime.settings)

    yield

    if runtime.cache is not None:
        try:
            await runtime.cache.close()
        except Exception as exc:
            logger.error("shutdown_cache_close_failed", error=str(exc))
    close_store = getattr(runtime.store, "close", None)
    if callable(close_store):
        close_store()
    logger.info("runtime_cleanup_complete")


app = FastAPI(title="Gatehouse Admin Sessions", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with a correlation id, honouring a client X-Request-ID."""
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if request.url.path.startswith("/v1/") or request.url.path == "/healthz":
        response.headers.setdefault(
            "Cache-Control", "no-store, no-cache, must-revalidate, private"
        )
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> JSONResponse:
    """Report store connectivity and whether admin sessions can be issued."""
    from gatehouse.service.runtime import get_runtime

    runtime = get_runtime()
    checks: Dict[str, Any] = {}
    healthy = True

    try:
        await asyncio.wait_for(
            asyncio.to_thread(runtime.store.verify_connection),
            HEALTH_CHECK_TIMEOUT_SECONDS,
        )
        checks["database"] = {"status": "healthy"}
    except asyncio.TimeoutError:
        logger.error("health_check_timeout", component="database")
        checks["database"] = {"status": "unhealthy", "error": "timeout"}
        healthy = False
    except Exception as exc:
        logger.error("health_check_database_failed", error=str(exc))
        checks["database"] = {"status": "unhealthy", "error": "unavailable"}
        healthy = False

    checks["redis"] = {
        "status": "healthy" if runtime.cache is not None else "disabled",
    }
    admin_status = runtime.admin_config.status()
    checks["admin_auth"] = admin_status
    if not admin_status["configured"]:
        healthy = False

    body = {
        "status": "healthy" if healthy else "unhealthy",
        "version": __version__,
        "checks": checks,
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)


def create_app() -> FastAPI:
    return app
