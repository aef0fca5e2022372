"""
Health check aggregation — deep probe for the running subsystems.

Checks:
    • Database connectivity (SELECT 1 on the SQLite engine)
    • Scheduler running + registered job count
    • Notification backends configured
    • Remaining daily API budget

Used by /health (full report) and /health/ready (503 when unhealthy).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from skycast.app.core.budget import RateBudget
from skycast.app.core.config import settings

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


async def check_database(engine: Optional[AsyncEngine]) -> ComponentHealth:
    comp = ComponentHealth(name="database")
    start = time.monotonic()
    if engine is None:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Database not initialised"
        return comp
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        comp.message = "Connection available"
        comp.details = {"backend": engine.url.get_backend_name()}
    except SQLAlchemyError as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_scheduler(scheduler_service: Any) -> ComponentHealth:
    comp = ComponentHealth(name="scheduler")
    if scheduler_service is None:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Scheduler disabled"
        return comp
    cron = scheduler_service.cron
    comp.details = {"running": cron.running, "scheduled": len(cron.scheduled_ids())}
    if not cron.running:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Scheduler not running"
    else:
        comp.message = "Scheduler running"
    return comp


def check_notifications(dispatcher: Any) -> ComponentHealth:
    comp = ComponentHealth(name="notifications")
    backends = [k.value for k in dispatcher.configured_backends()] if dispatcher else []
    comp.details = {"backends": backends}
    if not backends:
        comp.status = HealthStatus.DEGRADED
        comp.message = "No notification backends configured"
    else:
        comp.message = f"{len(backends)} backend(s) configured"
    return comp


def check_budget(budget: Optional[RateBudget]) -> ComponentHealth:
    comp = ComponentHealth(name="api_budget")
    if budget is None:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Budget not initialised"
        return comp
    comp.details = budget.to_dict()
    if budget.is_exhausted():
        comp.status = HealthStatus.DEGRADED
        comp.message = "Daily API budget exhausted"
    else:
        comp.message = f"{budget.remaining()} calls remaining today"
    return comp


async def run_health_check(state: Any) -> HealthReport:
    """Aggregate component checks from the objects held on ``app.state``."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )
    report.components = [
        await check_database(getattr(state, "engine", None)),
        check_scheduler(getattr(state, "scheduler_service", None)),
        check_notifications(getattr(state, "dispatcher", None)),
        check_budget(getattr(state, "budget", None)),
    ]

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY
    return report
