"""
FastAPI routes: weather history.

Provides endpoints to:
    GET /api/v1/history/{city}?start=&end=&units=        — hourly points
    GET /api/v1/history/{city}/daily?start=&end=&units=  — daily summaries
    GET /api/v1/history/{city}/trends?period=7d|30d|90d  — trends
                                     (or start= & end= for a custom range)

``start``/``end`` are epoch seconds; the default window is the last 7 days.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from skycast.app.api.dependencies import get_history_service
from skycast.app.core.config import settings
from skycast.app.history.service import HistoryService

router = APIRouter(prefix="/api/v1/history", tags=["history"])


@router.get("/{city}", summary="Hourly weather history")
async def get_history(
    city: str,
    start: Optional[int] = Query(None, description="Start, epoch seconds"),
    end: Optional[int] = Query(None, description="End, epoch seconds"),
    units: Optional[str] = Query(None, examples=["metric"]),
    service: HistoryService = Depends(get_history_service),
) -> Dict[str, Any]:
    response = await service.get_history(city, start, end, units or settings.DEFAULT_UNITS)
    return response.to_dict()


@router.get("/{city}/daily", summary="Daily weather summaries")
async def get_daily_history(
    city: str,
    start: Optional[int] = Query(None),
    end: Optional[int] = Query(None),
    units: Optional[str] = Query(None),
    service: HistoryService = Depends(get_history_service),
) -> Dict[str, Any]:
    response = await service.get_daily_history(
        city, start, end, units or settings.DEFAULT_UNITS,
    )
    return response.to_dict()


@router.get("/{city}/trends", summary="Temperature trend and summary statistics")
async def get_trends(
    city: str,
    period: str = Query("7d", examples=["30d"]),
    units: Optional[str] = Query(None),
    start: Optional[int] = Query(None),
    end: Optional[int] = Query(None),
    service: HistoryService = Depends(get_history_service),
) -> Dict[str, Any]:
    response = await service.get_trends(
        city, period, units or settings.DEFAULT_UNITS, start, end,
    )
    return response.to_dict()
