"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Classifier artifacts (files present, loaded, last load error)
    • Device-local store (read; write round-trip on readiness)
    • Connectivity and pending alert backlog

Returns a structured health report suitable for:
    - liveness/readiness probes of the local device agent
    - the UI's status indicator
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List

from lifeline.core.config import settings

if TYPE_CHECKING:
    from lifeline.services import AppServices

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


_start_time = time.monotonic()


async def check_model_artifacts(services: "AppServices") -> ComponentHealth:
    """Artifact files on disk plus registry load state."""
    comp = ComponentHealth(name="model_artifacts")
    start = time.monotonic()
    cfg = services.settings

    files = {
        "urgency_vocabulary": cfg.URGENCY_VOCAB_PATH,
        "urgency_model": cfg.URGENCY_MODEL_PATH,
        "category_vocabulary": cfg.CATEGORY_VOCAB_PATH,
        "category_model": cfg.CATEGORY_MODEL_PATH,
    }
    missing = [name for name, path in files.items() if not Path(path).exists()]
    registry_status = services.registry.status()
    failed = [n for n, s in registry_status.items() if s["last_error"]]

    if missing or failed:
        # triage degrades to "Unknown" labels; submission still works
        comp.status = HealthStatus.DEGRADED
        comp.message = "Triage degraded: " + ", ".join(missing + failed)
    else:
        comp.message = "Artifacts available"

    comp.details = {"missing_files": missing, "registry": registry_status}
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


HEALTH_PROBE_KEY = "health_probe"


async def check_local_store(services: "AppServices", write: bool = False) -> ComponentHealth:
    """
    Read from the device-local store; with ``write``, round-trip a probe value.

    The write rewrites the whole file on the JSON backend, so only the
    readiness check asks for it.
    """
    comp = ComponentHealth(name="local_store")
    start = time.monotonic()
    store = services.local_store
    try:
        if write:
            probe = datetime.now(timezone.utc).isoformat()
            await store.set(HEALTH_PROBE_KEY, probe)
            if await store.get(HEALTH_PROBE_KEY) != probe:
                raise RuntimeError("probe value mismatch")
        else:
            await store.get(HEALTH_PROBE_KEY)
        comp.message = type(store).__name__
        comp.details = {"write_checked": write}
    except Exception as e:
        logger.warning("Local store health probe failed: %s", e)
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_connectivity(services: "AppServices") -> ComponentHealth:
    """Connectivity flag and the pending backlog."""
    comp = ComponentHealth(name="connectivity")
    start = time.monotonic()
    try:
        pending = await services.pipeline.pending.count()
    except Exception as e:
        logger.warning("Pending queue unreadable during health check: %s", e)
        comp.status = HealthStatus.DEGRADED
        comp.message = f"pending queue unreadable: {e}"
        pending = None

    online = services.connectivity.is_online
    comp.details = {"online": online, "pending_alerts": pending}
    if not comp.message:
        comp.message = "online" if online else "offline, alerts will be queued"
        if not online:
            comp.status = HealthStatus.DEGRADED
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(services: "AppServices", write_probe: bool = False) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [
        check_model_artifacts(services),
        check_local_store(services, write=write_probe),
        check_connectivity(services),
    ]

    for coro in checks:
        comp = await coro
        report.components.append(comp)

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
