"""
History backfill — spend the daily API budget filling gaps in history.

═══════════════════════════════════════════════════════════════════════════
CITY PRIORITY
═══════════════════════════════════════════════════════════════════════════

    1. first city of each enabled device        ("my location")
    2. remaining cities of enabled devices
    3. cities of enabled forecast jobs
    4. HISTORY_BACKFILL_FALLBACK_CITIES

Duplicates keep their first position.

═══════════════════════════════════════════════════════════════════════════
RUN
═══════════════════════════════════════════════════════════════════════════

    for city in priority order:
        budget.remaining() == 0          → stop the run
        geocode fails                    → warn, next city
        missing buckets lookup fails     → warn, next city
        for bucket in missing (oldest first):
            fetch_bucket_if_budget → None    → budget exhausted, stop the run
                                   → error   → warn, next bucket
            sleep HISTORY_BACKFILL_REQUEST_DELAY_MS

Window: [now - max_years * 365 days, now], units "metric". Running out of
budget is the normal way a run ends; it is reported, not raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from skycast.app.core.budget import RateBudget
from skycast.app.core.config import Settings, settings as default_settings
from skycast.app.core.errors import SkycastError
from skycast.app.core.logging_config import log_context
from skycast.app.devices.models import Device
from skycast.app.devices.service import DeviceService
from skycast.app.history.service import HistoryService
from skycast.app.scheduler.jobs import ForecastJob
from skycast.app.scheduler.service import SchedulerService

logger = logging.getLogger(__name__)

BACKFILL_JOB_ID = "system:history-backfill"
BACKFILL_UNITS = "metric"
SECONDS_PER_YEAR = 365 * 86_400


def build_city_list(
    devices: Sequence[Device],
    jobs: Sequence[ForecastJob],
    fallback: Sequence[str],
) -> List[str]:
    ordered: Dict[str, None] = {}
    enabled_devices = [d for d in devices if d.enabled]

    for device in enabled_devices:
        if device.cities:
            ordered.setdefault(device.cities[0])
    for device in enabled_devices:
        for city in device.cities:
            ordered.setdefault(city)
    for job in jobs:
        if job.enabled:
            ordered.setdefault(job.city)
    for city in fallback:
        ordered.setdefault(city)

    return list(ordered)


@dataclass
class BackfillReport:
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    cities_total: int = 0
    cities_processed: List[str] = field(default_factory=list)
    cities_skipped: List[str] = field(default_factory=list)
    cities_failed: List[str] = field(default_factory=list)
    buckets_fetched: int = 0
    records_inserted: int = 0
    per_city: Dict[str, int] = field(default_factory=dict)
    budget_exhausted: bool = False
    budget_used: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BackfillEngine:
    """
    Usage:
        engine = BackfillEngine(history, devices, scheduler, budget)
        report = await engine.run()
    """

    def __init__(
        self,
        history_service: HistoryService,
        device_service: DeviceService,
        scheduler_service: SchedulerService,
        budget: RateBudget,
        cfg: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.history = history_service
        self.devices = device_service
        self.scheduler = scheduler_service
        self.budget = budget
        self.cfg = cfg or default_settings
        self._sleep = sleep
        self._clock = clock
        self.last_report: Optional[BackfillReport] = None

    async def _cities(self) -> List[str]:
        devices = await self.devices.get_all()
        jobs = await self.scheduler.get_jobs()
        return build_city_list(devices, jobs, self.cfg.HISTORY_BACKFILL_FALLBACK_CITIES)

    async def run(self) -> BackfillReport:
        with log_context(run="backfill"):
            return await self._run()

    async def _run(self) -> BackfillReport:
        report = BackfillReport(started_at=self._clock())
        cities = await self._cities()
        report.cities_total = len(cities)

        if not cities:
            logger.info("Backfill: no cities configured, skipping")
            return self._finish(report)

        now = int(self._clock())
        start_ts = now - self.cfg.HISTORY_BACKFILL_MAX_YEARS * SECONDS_PER_YEAR
        logger.info(
            "Starting history backfill for %d cities", len(cities),
            extra={"budget_remaining": self.budget.remaining()},
        )

        for city in cities:
            if self.budget.remaining() == 0:
                logger.info("Backfill: daily budget exhausted")
                report.budget_exhausted = True
                break
            with log_context(city=city):
                await self._backfill_city(city, start_ts, now, report)
            if report.budget_exhausted:
                break

        return self._finish(report)

    async def _backfill_city(
        self, city: str, start_ts: int, now: int, report: BackfillReport,
    ) -> None:
        delay = self.cfg.HISTORY_BACKFILL_REQUEST_DELAY_MS / 1000
        try:
            location = await self.history.geocode(city)
        except SkycastError as e:
            logger.warning("Backfill: failed to geocode %s, skipping: %s", city, e.message)
            report.cities_failed.append(city)
            return
        name = location.name

        try:
            missing = await self.history.get_missing_buckets(name, start_ts, now, BACKFILL_UNITS)
        except SkycastError as e:
            logger.warning("Backfill: failed to list missing buckets for %s: %s", name, e.message)
            report.cities_failed.append(city)
            return

        if not missing:
            logger.debug("Backfill: %s fully cached", name)
            report.cities_skipped.append(city)
            return

        logger.info(
            "Backfill: fetching %d missing buckets for %s", len(missing), name,
            extra={"budget_remaining": self.budget.remaining()},
        )
        inserted = 0
        for ts in missing:
            try:
                result = await self.history.fetch_bucket_if_budget(
                    name, location, ts, BACKFILL_UNITS,
                )
            except SkycastError as e:
                logger.warning("Backfill: failed to fetch %s @ %d, skipping: %s", name, ts, e.message)
                await self._sleep(delay)
                continue

            if result is None:
                logger.info("Backfill: budget exhausted mid-city")
                report.budget_exhausted = True
                break

            report.buckets_fetched += 1
            inserted += result
            await self._sleep(delay)

        report.per_city[name] = inserted
        report.records_inserted += inserted
        report.cities_processed.append(city)
        logger.info("Backfill: %s complete", name, extra={"inserted": inserted})

    def _finish(self, report: BackfillReport) -> BackfillReport:
        report.finished_at = self._clock()
        report.budget_used = self.budget.used_today()
        self.last_report = report
        logger.info(
            "Backfill run finished: %d records inserted, %d calls used today",
            report.records_inserted, report.budget_used,
            extra={"inserted": report.records_inserted,
                   "budget_remaining": self.budget.remaining()},
        )
        return report


def schedule_backfill_job(
    scheduler_service: SchedulerService,
    engine: BackfillEngine,
    cron: Optional[str] = None,
) -> None:
    """Register ``engine.run`` as a system cron job (UTC)."""
    expression = cron or engine.cfg.HISTORY_BACKFILL_CRON
    scheduler_service.cron.add_system_job(BACKFILL_JOB_ID, engine.run, cron=expression)
    logger.info("History backfill scheduled with cron '%s'", expression)
