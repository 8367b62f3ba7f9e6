"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Contact store reachability (in-memory or PostgreSQL)
    • SMS gateway configuration

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from backend.app.core.config import settings
from backend.app.core.errors import StoreUnavailableError

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


async def check_contact_store(store: Any) -> ComponentHealth:
    """Ping the contact store."""
    comp = ComponentHealth(name="contact_store")
    start = time.monotonic()
    try:
        await store.ping()
        comp.status = HealthStatus.HEALTHY
        comp.message = "Store reachable"
    except StoreUnavailableError as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = e.message
    comp.details = {"backend": settings.STORE_BACKEND}
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_sms_gateway(gateway: Any) -> ComponentHealth:
    """Report which gateway is wired in. Simulation is flagged outside development."""
    comp = ComponentHealth(name="sms_gateway")
    start = time.monotonic()
    kind = type(gateway).__name__
    comp.details = {"gateway": kind, "provider": settings.SMS_PROVIDER}

    if kind == "SimulatedSmsGateway" and settings.is_production:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Simulated gateway in production: no SMS is delivered"
    else:
        comp.status = HealthStatus.HEALTHY
        comp.message = "Gateway configured"

    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(relay: Any) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    report.components.append(await check_contact_store(relay.store))
    report.components.append(await check_sms_gateway(relay.gateway))

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
