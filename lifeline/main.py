"""
FastAPI application entry point — the local device agent.

Run with:
    uvicorn lifeline.main:app --port 8000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lifeline.api.v1.alerts import router as alerts_router
from lifeline.core.config import Settings, settings
from lifeline.core.errors import register_error_handlers
from lifeline.core.health import HealthStatus, run_health_check
from lifeline.core.logging_config import setup_logging
from lifeline.core.middleware import RequestLoggingMiddleware
from lifeline.services import AppServices, build_services, shutdown_services

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[Settings] = None,
    services: Optional[AppServices] = None,
) -> FastAPI:
    """
    Build the application.

    ``services`` lets tests inject an in-memory service graph; otherwise
    one is built from settings during startup.
    """
    config = config or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting %s v%s [%s]",
            config.APP_NAME, config.APP_VERSION, config.ENVIRONMENT,
        )
        if services is None:
            app.state.services = build_services(config)
        else:
            app.state.services = services
        if config.PREWARM_MODELS:
            await app.state.services.registry.prewarm()
        await app.state.services.pipeline.prime_location()
        yield
        await shutdown_services(app.state.services)
        logger.info("Shutting down %s", config.APP_NAME)

    app = FastAPI(
        title=config.APP_NAME,
        description=(
            "Offline-resilient emergency alert submission with on-device "
            "triage: Naive-Bayes urgency scoring, neural disaster-category "
            "classification, rate limiting, local queueing and reconnect retry."
        ),
        version=config.APP_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    register_error_handlers(app)
    app.include_router(alerts_router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": config.APP_NAME,
            "version": config.APP_VERSION,
            "environment": config.ENVIRONMENT,
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health probe across all subsystems."""
        report = await run_health_check(app.state.services)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        report = await run_health_check(app.state.services, write_probe=True)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


setup_logging()
app = create_app()
