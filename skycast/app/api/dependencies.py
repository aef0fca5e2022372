"""
FastAPI dependencies — services held on ``app.state`` and the device API key.

The lifespan in main.py builds every service once and stores it on
``app.state``; routes receive them through these functions so tests can
swap in their own objects.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Header, Request

from skycast.app.backfill.runner import BackfillEngine
from skycast.app.core.budget import RateBudget
from skycast.app.core.config import settings
from skycast.app.core.errors import AuthenticationError
from skycast.app.devices.service import DeviceService
from skycast.app.history.service import HistoryService
from skycast.app.scheduler.service import SchedulerService

logger = logging.getLogger(__name__)


def get_scheduler_service(request: Request) -> SchedulerService:
    return request.app.state.scheduler_service


def get_device_service(request: Request) -> DeviceService:
    return request.app.state.device_service


def get_history_service(request: Request) -> HistoryService:
    return request.app.state.history_service


def get_budget(request: Request) -> Optional[RateBudget]:
    return getattr(request.app.state, "budget", None)


def get_backfill_engine(request: Request) -> Optional[BackfillEngine]:
    return getattr(request.app.state, "backfill_engine", None)


async def require_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> None:
    """Device routes are open unless DEVICE_API_KEY is configured."""
    expected = settings.DEVICE_API_KEY
    if not expected:
        return
    if x_api_key is None:
        logger.warning("Missing API key for device endpoint")
        raise AuthenticationError(
            "API key required. Provide X-API-Key header.", error_code="MISSING_API_KEY",
        )
    if x_api_key != expected:
        logger.warning("Invalid API key provided for device endpoint")
        raise AuthenticationError("Invalid API key", error_code="INVALID_API_KEY")
