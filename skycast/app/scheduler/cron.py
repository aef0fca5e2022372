"""
Cron registration on top of APScheduler's AsyncIOScheduler.

═══════════════════════════════════════════════════════════════════════════
EXPRESSIONS
═══════════════════════════════════════════════════════════════════════════

    5 fields   min hour dom mon dow             "30 6 * * 1-5"
    6 fields   sec min hour dom mon dow         "0 30 6 * * *"
    7 fields   sec min hour dom mon dow year    "0 0 8 * * * 2027"

``?`` is read as ``*``. Numeric weekdays follow the convention of the field
count and are rewritten to weekday names before APScheduler sees them:

    5 fields        0 or 7 = Sunday, 1 = Monday … 6 = Saturday
    6 / 7 fields    1 = Sunday, 2 = Monday … 7 = Saturday

APScheduler matches day-of-month AND day-of-week when both are restricted.

═══════════════════════════════════════════════════════════════════════════
TICKS
═══════════════════════════════════════════════════════════════════════════

Every fire runs as its own asyncio task on the event loop. The tick body is
wrapped so that an exception is logged and swallowed: a failing job stays
registered and fires again on its next trigger. With max_instances=1 a fire
that lands while the previous tick of the same job is still running is
skipped (APScheduler logs it).
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from skycast.app.core.config import settings
from skycast.app.core.errors import InvalidCronError, InvalidTimezoneError
from skycast.app.scheduler.jobs import ForecastJob

logger = logging.getLogger(__name__)

TickCallback = Callable[[str], Awaitable[Any]]

_WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

# numeric weekday -> index into _WEEKDAYS
_UNIX_DOW = {0: 6, 1: 0, 2: 1, 3: 2, 4: 3, 5: 4, 6: 5, 7: 6}
_QUARTZ_DOW = {1: 6, 2: 0, 3: 1, 4: 2, 5: 3, 6: 4, 7: 5}


def validate_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidTimezoneError(name) from e


def _weekday_token(token: str, table: Dict[int, int]) -> int:
    if token.isdigit():
        value = int(token)
        if value not in table:
            raise ValueError(f"day of week out of range: {token}")
        return table[value]
    name = token.lower()[:3]
    if name not in _WEEKDAYS:
        raise ValueError(f"unknown day of week: {token}")
    return _WEEKDAYS.index(name)


def _translate_day_of_week(field: str, table: Dict[int, int]) -> str:
    parts = []
    for part in field.split(","):
        expr, _, step = part.partition("/")
        if expr == "*":
            parts.append(part)
            continue

        first, _, last = expr.partition("-")
        start = _weekday_token(first, table)
        if not last:
            parts.append(_WEEKDAYS[start] + (f"/{step}" if step else ""))
            continue

        end = _weekday_token(last, table)
        if start <= end:
            parts.append(f"{_WEEKDAYS[start]}-{_WEEKDAYS[end]}" + (f"/{step}" if step else ""))
        elif step:
            raise ValueError(f"stepped range wraps past the end of the week: {part}")
        else:
            # e.g. sun-fri: mon-fri plus sun
            parts.append(f"{_WEEKDAYS[start]}-sun")
            parts.append(f"mon-{_WEEKDAYS[end]}")
    return ",".join(parts)


def parse_cron(expression: str, timezone: str = "UTC") -> CronTrigger:
    """
    Build a CronTrigger for ``expression`` evaluated in ``timezone``.

    Raises
    ------
    InvalidCronError
        Wrong field count or a field APScheduler rejects.
    InvalidTimezoneError
        ``timezone`` is not an IANA zone.
    """
    tz = validate_timezone(timezone)

    fields = ["*" if f == "?" else f for f in expression.split()]
    if len(fields) == 5:
        second = "0"
        minute, hour, day, month, dow = fields
        year = None
        table = _UNIX_DOW
    elif len(fields) in (6, 7):
        second, minute, hour, day, month, dow = fields[:6]
        year = fields[6] if len(fields) == 7 else None
        table = _QUARTZ_DOW
    else:
        raise InvalidCronError(expression, f"expected 5, 6 or 7 fields, got {len(fields)}")

    try:
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=_translate_day_of_week(dow, table),
            year=year,
            timezone=tz,
        )
    except ValueError as e:
        raise InvalidCronError(expression, str(e)) from e


def validate(job: ForecastJob) -> CronTrigger:
    """Check a job's cron and timezone, whether or not it is enabled."""
    validate_timezone(job.timezone)
    return parse_cron(job.cron, job.timezone)


class CronScheduler:
    """
    Maps job ids to live APScheduler registrations.

    Usage:
        cron = CronScheduler(on_tick=service.run_job)
        cron.schedule(job)
        cron.add_system_job("cache-sweep", sweep, interval_seconds=3600)
        cron.start()
    """

    def __init__(
        self,
        on_tick: TickCallback,
        *,
        max_instances: Optional[int] = None,
        misfire_grace_seconds: Optional[int] = None,
    ):
        self._on_tick = on_tick
        self._max_instances = max_instances or settings.SCHEDULER_MAX_CONCURRENT_TICKS
        self._misfire_grace = (
            misfire_grace_seconds
            if misfire_grace_seconds is not None
            else settings.SCHEDULER_MISFIRE_GRACE_SECONDS
        )
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._handles: Dict[str, Job] = {}
        self._lock = threading.Lock()

    # ── Lifecycle ──

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Cron scheduler started with %d jobs", len(self._scheduler.get_jobs()))

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Cron scheduler stopped")

    # ── Tick boundary ──

    @staticmethod
    async def _fire(job_id: str, func: Callable[..., Awaitable[Any]], *args: Any) -> None:
        started = time.perf_counter()
        try:
            await func(*args)
        except Exception:
            logger.exception("Tick for job %s failed", job_id, extra={"job_id": job_id})
        else:
            logger.debug(
                "Tick for job %s finished", job_id,
                extra={
                    "job_id": job_id,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )

    # ── Forecast jobs ──

    def schedule(self, job: ForecastJob) -> Job:
        """Register (or re-register) ``job`` on its cron trigger."""
        trigger = validate(job)
        with self._lock:
            handle = self._scheduler.add_job(
                self._fire,
                trigger,
                args=[job.id, self._on_tick, job.id],
                id=job.id,
                name=job.name,
                replace_existing=True,
                misfire_grace_time=self._misfire_grace,
                coalesce=True,
                max_instances=self._max_instances,
            )
            self._handles[job.id] = handle
        logger.info(
            "Scheduled job %s (%s) cron='%s' tz=%s",
            job.id, job.name, job.cron, job.timezone,
            extra={"job_id": job.id, "city": job.city},
        )
        return handle

    def unschedule(self, job_id: str) -> bool:
        """Remove the registration; True iff one existed."""
        with self._lock:
            handle = self._handles.pop(job_id, None)
            if handle is None:
                return False
            try:
                self._scheduler.remove_job(job_id)
            except JobLookupError:
                logger.debug("Job %s already gone from the scheduler", job_id)
        logger.info("Unscheduled job %s", job_id, extra={"job_id": job_id})
        return True

    def is_scheduled(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._handles

    def scheduled_ids(self) -> List[str]:
        with self._lock:
            return list(self._handles)

    def next_run_time(self, job_id: str) -> Optional[datetime]:
        with self._lock:
            handle = self._handles.get(job_id)
        if handle is None:
            return None
        next_run = getattr(handle, "next_run_time", None)
        if next_run is not None:
            return next_run
        # not started yet: ask the trigger directly
        return handle.trigger.get_next_fire_time(None, datetime.now(handle.trigger.timezone))

    # ── System jobs ──

    def add_system_job(
        self,
        job_id: str,
        func: Callable[[], Awaitable[Any]],
        *,
        cron: Optional[str] = None,
        timezone: str = "UTC",
        interval_seconds: Optional[int] = None,
    ) -> Job:
        """Register housekeeping work (backfill, cache sweep, retention)."""
        if cron:
            trigger = parse_cron(cron, timezone)
        elif interval_seconds:
            trigger = IntervalTrigger(seconds=interval_seconds, timezone=ZoneInfo("UTC"))
        else:
            raise ValueError("add_system_job needs cron or interval_seconds")

        handle = self._scheduler.add_job(
            self._fire,
            trigger,
            args=[job_id, func],
            id=job_id,
            name=job_id,
            replace_existing=True,
            misfire_grace_time=self._misfire_grace,
            coalesce=True,
            max_instances=1,
        )
        logger.info("Registered system job %s (%s)", job_id, cron or f"every {interval_seconds}s")
        return handle
