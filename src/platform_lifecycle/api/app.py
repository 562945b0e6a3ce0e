"""FastAPI application factory for the platform lifecycle service."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from platform_lifecycle import __version__
from platform_lifecycle.api.error_handlers import register_error_handlers
from platform_lifecycle.api.routes import router as platforms_router
from platform_lifecycle.api.runner import BackgroundOperations
from platform_lifecycle.config.models import ServiceConfig
from platform_lifecycle.observability.health import check_service_health
from platform_lifecycle.platforms.guard import ApplicationBindingGuard
from platform_lifecycle.platforms.manager import PlatformManager
from platform_lifecycle.platforms.store import (
    ApplicationBindings,
    InMemoryApplicationBindings,
    InMemoryPlatformStore,
    PlatformStore,
)
from platform_lifecycle.provisioners.base import Provisioner
from platform_lifecycle.provisioners.factory import create_dispatcher

logger = structlog.get_logger()

health_router = APIRouter(tags=["health"])

# Seconds to wait for running builds on shutdown.
SHUTDOWN_DRAIN_TIMEOUT = 600.0


@health_router.get("/healthz")
async def liveness() -> dict[str, str]:
    return {"status": "ok"}


@health_router.get("/readyz")
async def readiness(request: Request) -> JSONResponse:
    manager: PlatformManager = request.app.state.manager
    health = await check_service_health(manager.provisioner)
    return JSONResponse(status_code=200 if health.healthy else 503, content=health.to_dict())


def build_manager(
    config: ServiceConfig,
    *,
    provisioner: Provisioner | None = None,
    store: PlatformStore | None = None,
    bindings: ApplicationBindings | None = None,
) -> PlatformManager:
    """Wire a manager from configuration; any collaborator may be injected."""
    guard = ApplicationBindingGuard(
        bindings if bindings is not None else InMemoryApplicationBindings(),
        config.binding_policy,
    )
    return PlatformManager(
        store=store if store is not None else InMemoryPlatformStore(),
        provisioner=provisioner if provisioner is not None else create_dispatcher(config),
        guard=guard,
    )


def create_app(
    config: ServiceConfig | None = None,
    *,
    manager: PlatformManager | None = None,
) -> FastAPI:
    cfg = config or ServiceConfig()
    mgr = manager or build_manager(cfg)
    operations = BackgroundOperations()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "service.started",
            provisioner=getattr(mgr.provisioner, "active_name", type(mgr.provisioner).__name__),
            binding_policy=str(cfg.binding_policy),
        )
        yield
        await operations.drain(timeout=SHUTDOWN_DRAIN_TIMEOUT)
        close = getattr(mgr.provisioner, "close", None)
        if close is not None:
            await close()
        logger.info("service.stopped")

    app = FastAPI(
        title="Platform Lifecycle",
        description="Add, update and remove platforms (base build templates)",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = cfg
    app.state.manager = mgr
    app.state.operations = operations

    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(platforms_router)
    return app
