"""
ASGI application for the ledger sync service.

Run with ``uvicorn main:app`` or ``python main.py``. Startup loads the
configuration, wires the store, lock manager, ledger feed and update
controller, and hands them to the routers.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from api.routes import init_services, nft_router, token_router
from config.loader import ConfigurationManager
from config.models import Config
from core.logging import configure_logging
from core.services import SyncServices, build_services
from core.store import describe

SERVICE_NAME = "ledger-sync"
API_VERSION = "1.0.0"

_config: Config | None = None
_services: SyncServices | None = None

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    global _config, _services

    # Logging is configured from the loaded config, so nothing is logged before it.
    _config = ConfigurationManager().load_config()
    configure_logging(
        level=_config.logging.level,
        fmt=_config.logging.format,
        service_name=SERVICE_NAME,
    )

    try:
        _services = await build_services(_config)
    except Exception as e:
        logger.error(f"Service wiring failed: {e}", exc_info=True)
        raise
    init_services(_services)
    logger.info("Ledger sync service ready", extra={
        "networks": sorted(_config.networks),
        "store_backend": _config.store.backend,
        "environment": _config.app.env,
    })

    try:
        yield
    finally:
        logger.info("Stopping ledger sync service")
        init_services(None)
        if _services is not None:
            await _services.close()
            _services = None
        logger.info("Ledger sync service stopped")


app = FastAPI(
    title="Ledger Sync",
    description="""
Per account and network, the set of CW721 and CW20 contracts the account
has interacted with, built incrementally from the FCD transactions feed.

| `action` | Effect |
|----------|--------|
| `plain` | Return the stored aggregate |
| `update` | Start a background update, return immediately |
| `force_update` | Discard the aggregate and rescan from scratch |
""",
    version=API_VERSION,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Health", "description": "Liveness and readiness checks"},
        {"name": "NFTs", "description": "CW721 interaction aggregates"},
        {"name": "Tokens", "description": "CW20 interaction aggregates"},
    ],
)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    """Log anything the routes did not map and answer with a bare 500."""
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}: {exc}",
        exc_info=True,
        extra={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def _allowed_origin(origin: str | None) -> str | None:
    origins = _config.cors.allowed_origins if _config else ["*"]
    if "*" in origins:
        return "*"
    return origin if origin in origins else None


@app.middleware("http")
async def cors_headers(request: Request, call_next):
    """Answer preflights and tag responses for configured browser origins."""
    allowed = _allowed_origin(request.headers.get("origin"))

    if allowed and request.method == "OPTIONS":
        response = JSONResponse(status_code=200, content={})
    else:
        response = await call_next(request)

    if allowed:
        response.headers["Access-Control-Allow-Origin"] = allowed
        response.headers["Access-Control-Allow-Headers"] = "Origin, Content-Type, Accept"
    return response


app.include_router(nft_router)
app.include_router(token_router)


@app.get("/", tags=["Health"])
async def root():
    return {"service": SERVICE_NAME, "version": API_VERSION, "status": "ok"}


@app.get("/health", tags=["Health"])
async def liveness():
    """The process is up; says nothing about the store."""
    return {"status": "healthy"}


@app.get("/health/ready", tags=["Health"])
async def readiness():
    """Ready once services are wired and the store answers a read."""
    checks = {"config": "healthy" if _config is not None else "unhealthy"}

    if _services is None:
        checks["store"] = "unhealthy: not initialized"
    else:
        try:
            await _services.store.get_last_update_start("health:ready")
        except Exception as e:
            checks["store"] = f"unhealthy: {e}"
        else:
            checks["store"] = "healthy"

    ready = all(value == "healthy" for value in checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "healthy" if ready else "unhealthy",
            "checks": checks,
            "store": describe(_services.store) if _services else None,
            "running_updates": _services.controller.running_updates if _services else 0,
            "version": API_VERSION,
        },
    )


if __name__ == "__main__":
    import uvicorn

    settings = ConfigurationManager().load_config()
    uvicorn.run(app, host=settings.app.host, port=settings.app.port)
