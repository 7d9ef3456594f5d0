"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Disaster / alert-config store reachability (memory or PostgreSQL)
    • Real-time fan-out (subscribers, dropped messages)
    • Redis bridge connectivity (when FANOUT_BACKEND=redis)

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
    - Monitoring dashboards
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List

from backend.app.core.config import settings
from backend.app.storage.base import AlertConfigQuery, DisasterQuery

if TYPE_CHECKING:
    from backend.app.services.container import ServiceContainer

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


# Track application start time
_start_time = time.monotonic()


async def check_storage(services: "ServiceContainer") -> ComponentHealth:
    """Round-trip a trivial query against both stores."""
    comp = ComponentHealth(name=f"storage:{services.config.STORAGE_BACKEND}")
    start = time.monotonic()
    try:
        await services.disaster_store.list(DisasterQuery(limit=1))
        await services.config_store.list(AlertConfigQuery(is_active=True))
        comp.message = "Stores reachable"
        if services.config.STORAGE_BACKEND == "database":
            comp.details = {"url": services.config.DATABASE_URL.split("@")[-1]}
    except Exception as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_fanout(services: "ServiceContainer") -> ComponentHealth:
    comp = ComponentHealth(name="fanout")
    start = time.monotonic()
    stats = services.fanout.stats()
    comp.details = stats
    if stats["dropped"]:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"{stats['dropped']} message(s) dropped for slow subscribers"
    else:
        comp.message = f"{stats['subscribers']} subscriber(s) connected"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_redis(services: "ServiceContainer") -> ComponentHealth:
    """Check Redis bridge connectivity."""
    comp = ComponentHealth(name="redis")
    start = time.monotonic()
    url = services.config.REDIS_URL
    comp.details = {"url": url.split("@")[-1] if "@" in url else url}
    try:
        await services.bridge.ping()
        comp.message = "Bridge connected"
    except Exception as e:
        # Local subscribers are still served
        comp.status = HealthStatus.DEGRADED
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(services: "ServiceContainer") -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [check_storage(services), check_fanout(services)]
    if services.bridge is not None:
        checks.append(check_redis(services))

    for coro in checks:
        comp = await coro
        report.components.append(comp)

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    if report.status != HealthStatus.HEALTHY:
        logger.warning("Health check: %s", report.status.value)
    return report
