"""
Pydantic schemas shared by the v1 routers.

Job bodies reuse ForecastJob directly (camelCase on the wire); the models
here cover the remaining request and response shapes.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

class TriggerRequest(BaseModel):
    """Body for POST /api/v1/scheduler/trigger; omitted fields use defaults."""
    city: Optional[str] = Field(None, examples=["Chicago"])
    units: Optional[str] = Field(None, examples=["imperial"])


class TriggerResponse(BaseModel):
    success: bool
    city: str
    message: str
    backends: List[str] = Field(default_factory=list)
    report: Dict[str, Any] = Field(default_factory=dict)


class JobListResponse(BaseModel):
    jobs: List[Dict[str, Any]]
    count: int


class DeleteResponse(BaseModel):
    success: bool
    id: str


class BudgetStatus(BaseModel):
    daily_limit: int
    used_today: int
    remaining: int


class SchedulerStatusResponse(BaseModel):
    running: bool
    job_count: int
    scheduled_count: int
    notifications_configured: bool
    notification_backends: List[str]
    budget: Optional[BudgetStatus] = None
    last_runs: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    last_backfill: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Devices
# ---------------------------------------------------------------------------

class DeviceCountResponse(BaseModel):
    count: int


class TestNotificationResponse(BaseModel):
    status: str
    message: str
