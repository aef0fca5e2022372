"""
One tick of a forecast job: fetch → decide → render → dispatch.

═══════════════════════════════════════════════════════════════════════════
TICK PIPELINE
═══════════════════════════════════════════════════════════════════════════

    ForecastJob
        │
        ▼
    1. Fetch forecast ── error ──► failure message (HIGH, "warning") ─► stop
        │                           no retry; the next trigger is the retry
        ▼
    2. should_notify(snapshot, job.notify) ── false ──► skipped
        │
        ▼
    3. build_notification_message(snapshot)
        │
        ▼
    4. dispatcher.send() ── error ──► logged, run marked delivery_failed

Nothing raised inside ``run`` escapes it; the outcome is returned as a
JobRunRecord and kept by the scheduler service for status reporting.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from skycast.app.core.errors import SkycastError
from skycast.app.core.logging_config import log_context
from skycast.app.forecast.models import ForecastSnapshot
from skycast.app.forecast.service import ForecastService
from skycast.app.notifications.dispatcher import NotificationDispatcher
from skycast.app.notifications.models import DispatchReport, NotificationMessage, Priority
from skycast.app.scheduler.jobs import ForecastJob, NotifyConfig

logger = logging.getLogger(__name__)

PRECIPITATION_NOTIFY_THRESHOLD = 0.5


class RunStatus(str, Enum):
    NOTIFIED = "notified"
    SKIPPED = "skipped"
    DELIVERY_FAILED = "delivery_failed"
    FAILED = "failed"


@dataclass
class JobRunRecord:
    """Outcome of the most recent tick of a job."""
    job_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    status: RunStatus = RunStatus.SKIPPED
    error: Optional[str] = None
    backends: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "status": self.status.value,
            "error": self.error,
            "backends": self.backends,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Decision & rendering
# ═══════════════════════════════════════════════════════════════════════════

def should_notify(snapshot: ForecastSnapshot, notify: NotifyConfig) -> bool:
    """Any enabled predicate that holds for ``snapshot`` triggers a send."""
    if notify.on_run:
        return True

    if notify.on_alert and snapshot.alerts:
        return True

    if notify.on_precipitation and any(
        day.precipitation_probability > PRECIPITATION_NOTIFY_THRESHOLD
        for day in snapshot.daily
    ):
        return True

    current = snapshot.current
    if current is None:
        return False
    if notify.cold_threshold is not None and current.temperature < notify.cold_threshold:
        return True
    if notify.heat_threshold is not None and current.temperature > notify.heat_threshold:
        return True
    return False


def build_notification_message(snapshot: ForecastSnapshot) -> NotificationMessage:
    """
    Render a forecast as a push message.

    Example body:
        Now: 21.4 (feels 20.9)
        scattered clouds
        Today: 15 - 24
        Rain: 40% chance
        Expect afternoon showers
    """
    location = snapshot.location
    body = ""

    current = snapshot.current
    if current is not None:
        body += f"Now: {current.temperature:.1f} (feels {current.feels_like:.1f})\n"
        body += f"{current.description}\n"

    today = snapshot.today
    if today is not None:
        body += f"Today: {today.temp_min:.0f} - {today.temp_max:.0f}\n"
        if today.precipitation_probability > 0:
            body += f"Rain: {today.precipitation_probability * 100:.0f}% chance\n"
        if today.summary:
            body += today.summary

    if snapshot.alerts:
        body += "\n\nWEATHER ALERTS:\n"
        for alert in snapshot.alerts:
            body += f"- {alert.event}\n"
        priority = Priority.URGENT
        tags = ["warning", "weather"]
    else:
        priority = Priority.DEFAULT
        tags = ["sunny", "weather"]

    return NotificationMessage(
        title=f"{location.name}, {location.country}",
        body=body,
        priority=priority,
        tags=tags,
        city=location.name,
    )


def build_failure_message(job: ForecastJob, error: Exception) -> NotificationMessage:
    return NotificationMessage(
        title=f"Weather Alert: {job.name} Failed",
        body=f"Failed to fetch forecast for {job.city}: {error}",
        priority=Priority.HIGH,
        tags=["warning"],
        city=job.city,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Executor
# ═══════════════════════════════════════════════════════════════════════════

class JobExecutor:
    """
    Runs forecast jobs against the forecast collaborator and dispatcher.

    Usage:
        executor = JobExecutor(forecast_service, dispatcher)
        record = await executor.run(job)
        report = await executor.trigger_now("Chicago", "imperial")
    """

    def __init__(
        self,
        forecast_service: ForecastService,
        dispatcher: NotificationDispatcher,
    ):
        self.forecast_service = forecast_service
        self.dispatcher = dispatcher

    async def _fetch(self, job: ForecastJob) -> ForecastSnapshot:
        if job.include_daily and not job.include_hourly:
            return await self.forecast_service.get_daily_forecast(job.city, job.units)
        if job.include_hourly and not job.include_daily:
            return await self.forecast_service.get_hourly_forecast(job.city, job.units)
        return await self.forecast_service.get_forecast(job.city, job.units)

    async def _dispatch(
        self, job: ForecastJob, message: NotificationMessage,
    ) -> Optional[DispatchReport]:
        try:
            return await self.dispatcher.send(message)
        except SkycastError as e:
            logger.warning("Job %s: notification not delivered: %s", job.id, e.message)
            return None

    async def run(self, job: ForecastJob) -> JobRunRecord:
        with log_context(job_id=job.id, city=job.city):
            return await self._run(job)

    async def _run(self, job: ForecastJob) -> JobRunRecord:
        record = JobRunRecord(job_id=job.id, started_at=datetime.now(timezone.utc))
        started = time.perf_counter()
        logger.info("Running forecast job %s (%s)", job.name, job.city)

        try:
            snapshot = await self._fetch(job)
        except Exception as e:
            error = e.message if isinstance(e, SkycastError) else f"{type(e).__name__}: {e}"
            logger.error(
                "Job %s: forecast fetch failed: %s", job.id, error,
                exc_info=not isinstance(e, SkycastError),
            )
            record.status = RunStatus.FAILED
            record.error = error
            report = await self._dispatch(job, build_failure_message(job, e))
            if report is not None:
                record.backends = [k.value for k in report.succeeded]
            return self._finish(record, started)

        if not should_notify(snapshot, job.notify):
            logger.info("Job %s: no notification conditions met", job.id)
            record.status = RunStatus.SKIPPED
            return self._finish(record, started)

        report = await self._dispatch(job, build_notification_message(snapshot))
        if report is None:
            record.status = RunStatus.DELIVERY_FAILED
            record.error = "notification not delivered"
        else:
            record.status = RunStatus.NOTIFIED
            record.backends = [k.value for k in report.succeeded]
        return self._finish(record, started)

    @staticmethod
    def _finish(record: JobRunRecord, started: float) -> JobRunRecord:
        record.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Job %s finished: %s", record.job_id, record.status.value,
            extra={
                "job_id": record.job_id,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return record

    async def trigger_now(self, city: str, units: str) -> DispatchReport:
        """Fetch and always notify; errors propagate to the caller."""
        snapshot = await self.forecast_service.get_forecast(city, units)
        message = build_notification_message(snapshot)
        return await self.dispatcher.send(message)
