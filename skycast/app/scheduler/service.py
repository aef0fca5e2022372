"""
SchedulerService — job CRUD, cron registration and status.

A job exists in two places that must agree:

    JobStore        every job, enabled or not (durable)
    CronScheduler   exactly the enabled jobs (runtime only)

Writes validate cron + timezone first, persist second, and only then touch
the cron registration, so a rejected job is neither stored nor scheduled.
Ticks re-read the job from the store, so an edit takes effect on the next
fire without waiting for a restart.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from skycast.app.core.errors import NotFoundError, SkycastError, StorageError
from skycast.app.notifications.models import DispatchReport
from skycast.app.scheduler.cron import CronScheduler, validate
from skycast.app.scheduler.executor import JobExecutor, JobRunRecord
from skycast.app.scheduler.jobs import ForecastJob, JobConfig
from skycast.app.scheduler.storage import JobStore

logger = logging.getLogger(__name__)


class SchedulerService:
    """
    Usage:
        service = SchedulerService(store, executor)
        await service.init()                  # load + schedule enabled jobs
        await service.load_jobs_file("jobs.json")
        service.start()
        await service.create_job(ForecastJob(name="AM", city="Paris", cron="0 0 7 * * *"))
    """

    def __init__(
        self,
        store: JobStore,
        executor: JobExecutor,
        cron: Optional[CronScheduler] = None,
    ):
        self.store = store
        self.executor = executor
        self.cron = cron or CronScheduler(on_tick=self.run_job)
        self.last_runs: Dict[str, JobRunRecord] = {}

    # ── Lifecycle ──

    async def init(self) -> None:
        """Load the store and register every enabled job."""
        await self.store.load()
        for job in await self.store.get_enabled():
            try:
                self.cron.schedule(job)
            except SkycastError as e:
                logger.error(
                    "Stored job %s cannot be scheduled: %s", job.id, e.message,
                    extra={"job_id": job.id},
                )
        logger.info(
            "Scheduler initialised: %d jobs stored, %d scheduled",
            await self.store.count(), len(self.cron.scheduled_ids()),
        )

    def start(self) -> None:
        self.cron.start()

    def shutdown(self) -> None:
        self.cron.shutdown()

    async def load_jobs(self, config: JobConfig) -> int:
        """Add config-declared jobs whose id is not stored yet. Returns count added."""
        if not config.enabled:
            logger.info("Job config disabled, skipping %d jobs", len(config.jobs))
            return 0

        added = 0
        for job in config.jobs:
            if await self.store.exists(job.id):
                logger.debug("Config job %s already stored, skipping", job.id)
                continue
            try:
                await self.create_job(job)
                added += 1
            except SkycastError as e:
                logger.error(
                    "Failed to load job %s from config: %s", job.id, e.message,
                    extra={"job_id": job.id},
                )
        return added

    async def load_jobs_file(self, path: str) -> int:
        file_path = Path(path)
        if not file_path.exists():
            logger.warning("Scheduler jobs file %s not found", file_path)
            return 0
        try:
            config = JobConfig.model_validate(json.loads(file_path.read_text(encoding="utf-8")))
        except (OSError, ValueError, PydanticValidationError) as e:
            raise StorageError("jobs-config", f"cannot read {file_path}: {e}") from e
        added = await self.load_jobs(config)
        logger.info("Loaded %d jobs from %s", added, file_path)
        return added

    # ── Ticks ──

    async def run_job(self, job_id: str) -> Optional[JobRunRecord]:
        job = await self.store.get(job_id)
        if job is None or not job.enabled:
            logger.warning("Tick for missing or disabled job %s, unscheduling", job_id)
            self.cron.unschedule(job_id)
            return None
        record = await self.executor.run(job)
        self.last_runs[job_id] = record
        return record

    async def trigger_now(self, city: str, units: str) -> DispatchReport:
        return await self.executor.trigger_now(city, units)

    # ── CRUD ──

    async def create_job(self, job: ForecastJob) -> ForecastJob:
        validate(job)
        await self.store.upsert(job)
        if job.enabled:
            self.cron.schedule(job)
        else:
            self.cron.unschedule(job.id)
        logger.info("Created job %s (%s)", job.id, job.name, extra={"job_id": job.id})
        return job

    async def update_job(self, job: ForecastJob) -> ForecastJob:
        if not await self.store.exists(job.id):
            raise NotFoundError("ForecastJob", id=job.id)
        validate(job)

        await self.store.upsert(job)
        if job.enabled:
            self.cron.schedule(job)
        else:
            self.cron.unschedule(job.id)
        logger.info("Updated job %s (%s)", job.id, job.name, extra={"job_id": job.id})
        return job

    async def delete_job(self, job_id: str) -> bool:
        removed = await self.store.remove(job_id)
        self.cron.unschedule(job_id)
        self.last_runs.pop(job_id, None)
        if removed:
            logger.info("Deleted job %s", job_id, extra={"job_id": job_id})
        return removed

    async def get_job(self, job_id: str) -> Optional[ForecastJob]:
        return await self.store.get(job_id)

    async def get_jobs(self) -> List[ForecastJob]:
        return await self.store.get_all()

    async def get_enabled_jobs(self) -> List[ForecastJob]:
        return await self.store.get_enabled()

    # ── Status ──

    async def status(self) -> Dict[str, Any]:
        dispatcher = self.executor.dispatcher
        return {
            "running": self.cron.running,
            "job_count": await self.store.count(),
            "scheduled_count": len(self.cron.scheduled_ids()),
            "notifications_configured": dispatcher.is_configured(),
            "notification_backends": [k.value for k in dispatcher.configured_backends()],
            "last_runs": {
                job_id: record.to_dict() for job_id, record in self.last_runs.items()
            },
        }
