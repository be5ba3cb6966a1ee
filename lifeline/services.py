"""
services.py — Wiring of the long-lived objects behind the HTTP surface.

One ``AppServices`` per process, built from settings at startup and stored
on ``app.state``. Tests build their own with in-memory collaborators.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from lifeline.alerts.connectivity import ConnectivityMonitor
from lifeline.alerts.submission import SubmissionPipeline
from lifeline.core.clock import Clock, SystemClock
from lifeline.core.config import Settings
from lifeline.core.storage import LocalStore, build_local_store
from lifeline.ml.registry import ModelRegistry
from lifeline.ml.triage import TriageService, build_default_registry, build_triage_service

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    settings: Settings
    registry: ModelRegistry
    triage: TriageService
    local_store: LocalStore
    connectivity: ConnectivityMonitor
    pipeline: SubmissionPipeline


def build_services(
    config: Settings,
    *,
    local_store: Optional[LocalStore] = None,
    clock: Optional[Clock] = None,
) -> AppServices:
    """Build the default service graph from settings."""
    registry = build_default_registry(config)
    triage = build_triage_service(config, registry)
    local_store = local_store or build_local_store(config)
    connectivity = ConnectivityMonitor(online=True)
    pipeline = SubmissionPipeline.from_settings(
        config,
        triage=triage,
        local_store=local_store,
        connectivity=connectivity,
        clock=clock or SystemClock(),
    )
    logger.info(
        "Services built (local store: %s, alert store: %s)",
        type(local_store).__name__, config.ALERT_STORE_URL,
    )
    return AppServices(
        settings=config,
        registry=registry,
        triage=triage,
        local_store=local_store,
        connectivity=connectivity,
        pipeline=pipeline,
    )


def get_services(request: Request) -> AppServices:
    """FastAPI dependency: the process-wide service graph."""
    return request.app.state.services


async def shutdown_services(services: AppServices) -> None:
    """Detach the pipeline and close network clients (HTTP store, geolocation, Redis)."""
    services.pipeline.close()
    for resource in (
        services.pipeline.store,
        services.pipeline.location.source,
        services.local_store,
    ):
        close = getattr(resource, "close", None)
        if close is None:
            continue
        try:
            await close()
        except Exception:
            logger.exception("Failed to close %s", type(resource).__name__)
