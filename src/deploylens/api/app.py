"""FastAPI application factory.

The API is a thin layer over an :class:`IncidentForensicsEngine` and a
:class:`DeploymentLifecycleTracker`; both are built by the caller with
their collaborators and handed to :func:`create_app`.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from deploylens.api.exceptions import register_exception_handlers
from deploylens.api.routes import deployments, forensics
from deploylens.changes.deployment_tracker import DeploymentLifecycleTracker
from deploylens.config import settings
from deploylens.config.settings import Settings
from deploylens.incidents.forensics import IncidentForensicsEngine

logger = structlog.get_logger()


def create_app(
    forensics_engine: IncidentForensicsEngine,
    tracker: DeploymentLifecycleTracker,
    *,
    app_settings: Settings | None = None,
    manage_tracker: bool = True,
) -> FastAPI:
    """Create the API app.

    With ``manage_tracker`` the tracker is started on startup and stopped
    on shutdown.
    """
    cfg = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("deploylens_starting", environment=cfg.environment)
        if manage_tracker:
            await tracker.start()
        try:
            yield
        finally:
            if manage_tracker:
                await tracker.stop()
            logger.info("deploylens_stopped")

    app = FastAPI(
        title="DeployLens API",
        description="Deployment risk scoring, incident forensics and alert correlation",
        version=cfg.app_version,
        lifespan=lifespan,
        docs_url=f"{cfg.api_prefix}/docs",
        openapi_url=f"{cfg.api_prefix}/openapi.json",
    )
    app.state.forensics = forensics_engine
    app.state.tracker = tracker

    register_exception_handlers(app)
    app.include_router(forensics.router, prefix=cfg.api_prefix, tags=["Forensics"])
    app.include_router(deployments.router, prefix=cfg.api_prefix, tags=["Deployments"])

    @app.get("/health")
    async def health_check() -> dict[str, str | bool]:
        return {
            "status": "healthy",
            "version": cfg.app_version,
            "tracking": tracker.is_running,
        }

    return app
