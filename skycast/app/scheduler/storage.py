"""
Durable job storage.

A job's persisted existence is independent of whether it is scheduled: a
disabled job lives here and nowhere else.

Contract (both backends):
    get(id), get_all(), get_enabled(), exists(id), count()
    upsert(job)      full-record insert-or-replace, durable before returning
    remove(id)       True iff a record was removed
    write failures   StorageError, whichever backend

Backends:
    JsonFileJobStore   one JSON object keyed by job id, rewritten on each write
    SqlJobStore        `scheduler_jobs` table (async SQLAlchemy)
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import Boolean, Column, Index, String, Text, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from skycast.app.core.database import Base
from skycast.app.core.errors import StorageError
from skycast.app.core.jsonfile import read_json, write_json_atomic
from skycast.app.scheduler.jobs import ForecastJob, NotifyConfig

logger = logging.getLogger(__name__)


class JobStore(abc.ABC):
    """Keyed collection of ForecastJob records."""

    async def load(self) -> None:
        """Prepare the store (read files, etc.). No-op by default."""

    @abc.abstractmethod
    async def get(self, job_id: str) -> Optional[ForecastJob]: ...

    @abc.abstractmethod
    async def get_all(self) -> List[ForecastJob]: ...

    @abc.abstractmethod
    async def upsert(self, job: ForecastJob) -> None: ...

    @abc.abstractmethod
    async def remove(self, job_id: str) -> bool: ...

    async def get_enabled(self) -> List[ForecastJob]:
        return [j for j in await self.get_all() if j.enabled]

    async def exists(self, job_id: str) -> bool:
        return await self.get(job_id) is not None

    async def count(self) -> int:
        return len(await self.get_all())


# ═══════════════════════════════════════════════════════════════════════════
# JSON file backend
# ═══════════════════════════════════════════════════════════════════════════

class JsonFileJobStore(JobStore):
    """
    Jobs in a single JSON file:

        {"<job id>": {"id": ..., "name": ..., "notify": {...}}, ...}

    Every write rewrites the whole file atomically before returning.
    """

    def __init__(self, file_path: str):
        self.file_path = Path(file_path)
        self._jobs: Dict[str, ForecastJob] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> None:
        raw = read_json(self.file_path, "jobs")
        if raw is None:
            logger.debug("Job storage file %s does not exist, starting fresh", self.file_path)
            return
        try:
            jobs = {job_id: ForecastJob.model_validate(data) for job_id, data in raw.items()}
        except (AttributeError, PydanticValidationError) as e:
            raise StorageError("jobs", f"cannot read {self.file_path}: {e}") from e

        async with self._lock:
            self._jobs = jobs
        logger.info("Loaded %d jobs from %s", len(jobs), self.file_path)

    def _write(self) -> None:
        write_json_atomic(
            self.file_path,
            {job_id: job.to_wire() for job_id, job in self._jobs.items()},
            "jobs",
        )
        logger.debug("Saved %d jobs to storage", len(self._jobs))

    async def get(self, job_id: str) -> Optional[ForecastJob]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def get_all(self) -> List[ForecastJob]:
        return [job.model_copy(deep=True) for job in self._jobs.values()]

    async def upsert(self, job: ForecastJob) -> None:
        async with self._lock:
            previous = self._jobs.get(job.id)
            self._jobs[job.id] = job.model_copy(deep=True)
            try:
                self._write()
            except StorageError:
                if previous is None:
                    del self._jobs[job.id]
                else:
                    self._jobs[job.id] = previous
                raise

    async def remove(self, job_id: str) -> bool:
        async with self._lock:
            previous = self._jobs.pop(job_id, None)
            if previous is None:
                return False
            try:
                self._write()
            except StorageError:
                self._jobs[job_id] = previous
                raise
            return True

    async def count(self) -> int:
        return len(self._jobs)


# ═══════════════════════════════════════════════════════════════════════════
# SQL backend
# ═══════════════════════════════════════════════════════════════════════════

class ScheduledJobRow(Base):
    __tablename__ = "scheduler_jobs"
    __table_args__ = (Index("idx_jobs_enabled", "enabled"),)

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    city = Column(String, nullable=False)
    units = Column(String, nullable=False, default="metric")
    cron = Column(String, nullable=False)
    timezone = Column(String, nullable=False, default="UTC")
    include_daily = Column(Boolean, nullable=False, default=True)
    include_hourly = Column(Boolean, nullable=False, default=False)
    enabled = Column(Boolean, nullable=False, default=True)
    notify_config = Column(Text, nullable=False, default="{}")

    def to_job(self) -> ForecastJob:
        return ForecastJob(
            id=self.id,
            name=self.name,
            city=self.city,
            units=self.units,
            cron=self.cron,
            timezone=self.timezone,
            include_daily=self.include_daily,
            include_hourly=self.include_hourly,
            enabled=self.enabled,
            notify=NotifyConfig.model_validate(json.loads(self.notify_config or "{}")),
        )

    def apply(self, job: ForecastJob) -> None:
        self.name = job.name
        self.city = job.city
        self.units = job.units
        self.cron = job.cron
        self.timezone = job.timezone
        self.include_daily = job.include_daily
        self.include_hourly = job.include_hourly
        self.enabled = job.enabled
        self.notify_config = json.dumps(job.notify.to_wire())


class SqlJobStore(JobStore):
    """Jobs in the `scheduler_jobs` table; each write commits before returning."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, job_id: str) -> Optional[ForecastJob]:
        async with self._session_factory() as session:
            row = await session.get(ScheduledJobRow, job_id)
            return row.to_job() if row else None

    async def get_all(self) -> List[ForecastJob]:
        async with self._session_factory() as session:
            rows = (await session.execute(select(ScheduledJobRow))).scalars().all()
            return [row.to_job() for row in rows]

    async def get_enabled(self) -> List[ForecastJob]:
        async with self._session_factory() as session:
            stmt = select(ScheduledJobRow).where(ScheduledJobRow.enabled.is_(True))
            rows = (await session.execute(stmt)).scalars().all()
            return [row.to_job() for row in rows]

    async def upsert(self, job: ForecastJob) -> None:
        try:
            async with self._session_factory() as session:
                row = await session.get(ScheduledJobRow, job.id)
                if row is None:
                    row = ScheduledJobRow(id=job.id)
                    session.add(row)
                row.apply(job)
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError("jobs", f"cannot save job {job.id}: {e}") from e

    async def remove(self, job_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(ScheduledJobRow).where(ScheduledJobRow.id == job_id)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError("jobs", f"cannot remove job {job_id}: {e}") from e
        return result.rowcount > 0

    async def count(self) -> int:
        async with self._session_factory() as session:
            return (await session.execute(
                select(func.count()).select_from(ScheduledJobRow)
            )).scalar_one()


def create_job_store(
    backend: str,
    *,
    file_path: Optional[str] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> JobStore:
    """Build the store named by JOB_STORE_BACKEND (``file`` | ``database``)."""
    if backend == "file":
        if not file_path:
            raise StorageError("jobs", "file backend needs a storage path")
        return JsonFileJobStore(file_path)
    if backend == "database":
        if session_factory is None:
            raise StorageError("jobs", "database backend needs a session factory")
        return SqlJobStore(session_factory)
    raise StorageError("jobs", f"unknown job store backend '{backend}'")
