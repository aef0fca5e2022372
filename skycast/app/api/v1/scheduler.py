"""
FastAPI routes: forecast job scheduler.

Provides endpoints to:
    GET    /api/v1/scheduler/status          — scheduler, budget, last runs
    GET    /api/v1/scheduler/jobs            — list jobs
    POST   /api/v1/scheduler/jobs            — create a job
    GET    /api/v1/scheduler/jobs/{id}       — get one job
    PUT    /api/v1/scheduler/jobs/{id}       — replace a job
    DELETE /api/v1/scheduler/jobs/{id}       — delete a job
    POST   /api/v1/scheduler/trigger         — fetch + notify now
    POST   /api/v1/scheduler/trigger/{city}  — same, city in the path
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from skycast.app.api.dependencies import (
    get_backfill_engine,
    get_budget,
    get_scheduler_service,
)
from skycast.app.api.schemas import (
    DeleteResponse,
    JobListResponse,
    SchedulerStatusResponse,
    TriggerRequest,
    TriggerResponse,
)
from skycast.app.backfill.runner import BackfillEngine
from skycast.app.core.budget import RateBudget
from skycast.app.core.config import settings
from skycast.app.core.errors import NotFoundError
from skycast.app.scheduler.jobs import ForecastJob
from skycast.app.scheduler.service import SchedulerService

router = APIRouter(prefix="/api/v1/scheduler", tags=["scheduler"])


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------

@router.get(
    "/status",
    response_model=SchedulerStatusResponse,
    summary="Scheduler and backfill status",
)
async def scheduler_status(
    service: SchedulerService = Depends(get_scheduler_service),
    budget: Optional[RateBudget] = Depends(get_budget),
    engine: Optional[BackfillEngine] = Depends(get_backfill_engine),
):
    status = await service.status()
    status["budget"] = budget.to_dict() if budget else None
    last = engine.last_report if engine else None
    status["last_backfill"] = last.to_dict() if last else None
    return status


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

@router.get("/jobs", response_model=JobListResponse, summary="List forecast jobs")
async def list_jobs(service: SchedulerService = Depends(get_scheduler_service)):
    jobs = await service.get_jobs()
    return {"jobs": [j.to_wire() for j in jobs], "count": len(jobs)}


@router.post("/jobs", status_code=201, summary="Create a forecast job")
async def create_job(
    job: ForecastJob,
    service: SchedulerService = Depends(get_scheduler_service),
) -> Dict[str, Any]:
    created = await service.create_job(job)
    return created.to_wire()


@router.get("/jobs/{job_id}", summary="Get a forecast job")
async def get_job(
    job_id: str,
    service: SchedulerService = Depends(get_scheduler_service),
) -> Dict[str, Any]:
    job = await service.get_job(job_id)
    if job is None:
        raise NotFoundError("ForecastJob", id=job_id)
    return job.to_wire()


@router.put("/jobs/{job_id}", summary="Replace a forecast job")
async def update_job(
    job_id: str,
    job: ForecastJob,
    service: SchedulerService = Depends(get_scheduler_service),
) -> Dict[str, Any]:
    job.id = job_id
    updated = await service.update_job(job)
    return updated.to_wire()


@router.delete("/jobs/{job_id}", response_model=DeleteResponse, summary="Delete a forecast job")
async def delete_job(
    job_id: str,
    service: SchedulerService = Depends(get_scheduler_service),
):
    if not await service.delete_job(job_id):
        raise NotFoundError("ForecastJob", id=job_id)
    return {"success": True, "id": job_id}


# ---------------------------------------------------------------------------
# Manual trigger
# ---------------------------------------------------------------------------

async def _trigger(service: SchedulerService, city: str, units: str) -> Dict[str, Any]:
    report = await service.trigger_now(city, units)
    return {
        "success": report.success,
        "city": city,
        "message": f"Forecast notification sent for {city}",
        "backends": [k.value for k in report.succeeded],
        "report": report.to_dict(),
    }


@router.post("/trigger", response_model=TriggerResponse, summary="Send a forecast now")
async def trigger(
    request: Optional[TriggerRequest] = None,
    service: SchedulerService = Depends(get_scheduler_service),
):
    request = request or TriggerRequest()
    return await _trigger(
        service,
        request.city or settings.DEFAULT_CITY,
        request.units or settings.DEFAULT_UNITS,
    )


@router.post(
    "/trigger/{city}",
    response_model=TriggerResponse,
    summary="Send a forecast for a city now",
)
async def trigger_city(
    city: str,
    units: Optional[str] = None,
    service: SchedulerService = Depends(get_scheduler_service),
):
    return await _trigger(service, city, units or settings.DEFAULT_UNITS)
