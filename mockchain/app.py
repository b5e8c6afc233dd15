from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict

from fastapi import FastAPI, Request

from mockchain.api.error_handling import register_exception_handlers
from mockchain.api.routes import mock_router, router
from mockchain.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3


@asynccontextmanager
async def lifespan(app: FastAPI):
    from mockchain.service.runtime import get_runtime

    try:
        runtime = get_runtime()
    except Exception as exc:
        logger.error("startup_failed", error=str(exc))
    else:
        logger.info("app_started", store_type=type(runtime.store).__name__)

    yield

    # chains still running in the background get to finish and log first
    try:
        runtime = get_runtime()
        await runtime.handler.wait_for_chains()
        if runtime.cache is not None:
            await runtime.cache.close()
        if hasattr(runtime.store, "close"):
            runtime.store.close()
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))
    else:
        logger.info("app_stopped")


app = FastAPI(title="Mockchain", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def bind_request_id(request: Request, call_next):
    request_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


register_exception_handlers(app)
app.include_router(router)


async def _check_component(component: str, check: Callable[[], None]) -> bool:
    try:
        await asyncio.wait_for(asyncio.to_thread(check), HEALTH_CHECK_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.error("health_check_timeout", component=component)
        return False
    except Exception as exc:
        logger.error("health_check_failed", component=component, error=str(exc))
        return False
    return True


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    """Check the store and, when publishing is enabled, Redis."""
    from mockchain.service.runtime import get_runtime

    runtime = get_runtime()
    checks: Dict[str, bool] = {"store": True}
    if hasattr(runtime.store, "ping"):
        checks["store"] = await _check_component("store", runtime.store.ping)
    if runtime.cache is not None:
        checks["redis"] = await _check_component("redis", runtime.cache.verify_connection)

    healthy = all(checks.values())
    return {"status": "ok" if healthy else "degraded", "version": __version__, "checks": checks}


# the universal mock route matches any /<workspace>/<project>/<path>
app.include_router(mock_router)
