"""
History service — hourly weather history from the One Call timemachine API.

═══════════════════════════════════════════════════════════════════════════
BUCKETS & BUDGET
═══════════════════════════════════════════════════════════════════════════

History is kept as hourly buckets: epoch seconds aligned to the hour. A
bucket is "missing" when no row exists for (city, bucket, units).

    fetch_bucket_if_budget(city, location, ts, units)
        budget.record_call() false  → None       (budget exhausted, no call)
        upstream error              → raises     (caller decides)
        otherwise                   → rows inserted (0 if already stored)

Every timemachine call is metered: the shared RateBudget is consulted
before the request goes out, never after.

Reporting calls (get_history / get_daily_history / get_trends) top up the
requested window first: at most HISTORY_MAX_FETCHES_PER_REQUEST missing
buckets, most recent first, under the same budget. Whatever could not be
fetched is simply absent from the answer.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from skycast.app.core.budget import RateBudget
from skycast.app.core.config import settings
from skycast.app.core.errors import ExternalServiceError, InvalidDateRangeError, SkycastError
from skycast.app.forecast.models import GeoLocation
from skycast.app.forecast.service import SERVICE_NAME, Geocoder, OpenWeatherClient
from skycast.app.history.models import (
    DailyHistoryResponse,
    DailyHistorySummary,
    HistoryDataPoint,
    HistoryResponse,
    TrendResponse,
)
from skycast.app.history.repository import DailySummaryRow, HistoryRecord, HistoryRepository
from skycast.app.history.trends import compute_trend_summary, format_period, round_2

logger = logging.getLogger(__name__)

TIMEMACHINE_API_URL = "https://api.openweathermap.org/data/3.0/onecall/timemachine"

BUCKET_SECONDS = 3_600
DAY_SECONDS = 86_400
DEFAULT_RANGE_DAYS = 7
MAX_CUSTOM_RANGE_DAYS = 365
TREND_PERIODS = {"7d": 7, "30d": 30, "90d": 90}


def align_up(ts: int, step: int = BUCKET_SECONDS) -> int:
    return -(-ts // step) * step


def align_down(ts: int, step: int = BUCKET_SECONDS) -> int:
    return ts - ts % step


def _precip(volume: Any) -> Optional[float]:
    if isinstance(volume, dict):
        return volume.get("1h")
    return volume


def record_from_timemachine(
    point: Dict[str, Any],
    city: str,
    location: GeoLocation,
    timestamp: int,
    units: str,
    fetched_at: int,
) -> HistoryRecord:
    conditions = point.get("weather") or [{}]
    return HistoryRecord(
        city=city,
        lat=location.lat,
        lon=location.lon,
        timestamp=timestamp,
        temperature=float(point["temp"]),
        feels_like=float(point["feels_like"]),
        humidity=int(point.get("humidity", 0)),
        pressure=int(point.get("pressure", 0)),
        wind_speed=float(point.get("wind_speed", 0.0)),
        units=units,
        fetched_at=fetched_at,
        wind_direction=point.get("wind_deg"),
        clouds=point.get("clouds"),
        visibility=point.get("visibility"),
        description=conditions[0].get("description"),
        icon=conditions[0].get("icon"),
        rain_1h=_precip(point.get("rain")),
        snow_1h=_precip(point.get("snow")),
    )


def _summary(row: DailySummaryRow) -> DailyHistorySummary:
    return DailyHistorySummary(
        date=row.date,
        temp_min=row.temp_min,
        temp_max=row.temp_max,
        temp_avg=round_2(row.temp_avg),
        humidity_avg=round_2(row.humidity_avg),
        wind_speed_avg=round_2(row.wind_speed_avg),
        precipitation_total=round_2(row.precipitation_total),
        dominant_condition=row.dominant_condition,
    )


class HistoryService:
    """
    Usage:
        history = HistoryService(geocoder, api, repo, budget)
        location = await history.geocode("Chicago")
        for ts in await history.get_missing_buckets(location.name, start, end, "metric"):
            inserted = await history.fetch_bucket_if_budget(location.name, location, ts, "metric")
    """

    def __init__(
        self,
        geocoder: Geocoder,
        api: OpenWeatherClient,
        repo: HistoryRepository,
        budget: RateBudget,
        *,
        max_fetches_per_request: Optional[int] = None,
    ):
        self.geocoder = geocoder
        self._api = api
        self.repo = repo
        self.budget = budget
        self.max_fetches_per_request = (
            max_fetches_per_request
            if max_fetches_per_request is not None
            else settings.HISTORY_MAX_FETCHES_PER_REQUEST
        )

    async def geocode(self, location: str) -> GeoLocation:
        return await self.geocoder.geocode(location)

    async def get_missing_buckets(
        self, city: str, start_ts: int, end_ts: int, units: str,
    ) -> List[int]:
        """Hour-aligned timestamps in [start, end] with no stored record, oldest first."""
        first, last = align_up(start_ts), align_down(end_ts)
        if first > last:
            return []
        return await self.repo.get_missing_timestamps(city, first, last, BUCKET_SECONDS, units)

    async def fetch_bucket_if_budget(
        self, city: str, location: GeoLocation, ts: int, units: str,
    ) -> Optional[int]:
        if not self.budget.record_call():
            logger.info(
                "API budget exhausted, not fetching %s @ %d", city, ts,
                extra={"city": city, "budget_remaining": 0},
            )
            return None

        data = await self._api.get_json(
            TIMEMACHINE_API_URL,
            {"lat": location.lat, "lon": location.lon, "dt": ts, "units": units},
        )
        points = data.get("data") if isinstance(data, dict) else None
        if not points:
            logger.debug("Timemachine returned no data for %s @ %d", city, ts)
            return 0

        try:
            # one point per call; stored under the requested bucket
            record = record_from_timemachine(
                points[0], city, location, ts, units, int(time.time()),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ExternalServiceError(SERVICE_NAME, f"unexpected timemachine payload: {e}") from e
        return await self.repo.insert_batch([record])

    async def _top_up(
        self, city: str, location: GeoLocation, start_ts: int, end_ts: int, units: str,
    ) -> int:
        missing = await self.get_missing_buckets(city, start_ts, end_ts, units)
        if not missing:
            return 0

        inserted = 0
        for ts in list(reversed(missing))[: self.max_fetches_per_request]:
            try:
                result = await self.fetch_bucket_if_budget(city, location, ts, units)
            except SkycastError as e:
                logger.warning(
                    "Failed to fetch history for %s @ %d, skipping: %s", city, ts, e.message,
                    extra={"city": city},
                )
                continue
            if result is None:
                break
            inserted += result

        logger.debug(
            "Topped up %s: %d missing, %d inserted", city, len(missing), inserted,
            extra={"city": city, "inserted": inserted},
        )
        return inserted

    @staticmethod
    def _resolve_range(start: Optional[int], end: Optional[int]) -> Tuple[int, int]:
        end_ts = end if end is not None else int(time.time())
        start_ts = start if start is not None else end_ts - DEFAULT_RANGE_DAYS * DAY_SECONDS
        if start_ts >= end_ts:
            raise InvalidDateRangeError("start must be before end")
        return start_ts, end_ts

    async def get_history(
        self, city: str, start: Optional[int], end: Optional[int], units: str,
    ) -> HistoryResponse:
        start_ts, end_ts = self._resolve_range(start, end)
        location = await self.geocode(city)
        await self._top_up(location.name, location, start_ts, end_ts, units)

        records = await self.repo.get_range(location.name, start_ts, end_ts, units)
        return HistoryResponse(
            city=location.name,
            units=units,
            period=format_period(start_ts, end_ts),
            data_points=[HistoryDataPoint.from_record(r) for r in records],
        )

    async def get_daily_history(
        self, city: str, start: Optional[int], end: Optional[int], units: str,
    ) -> DailyHistoryResponse:
        start_ts, end_ts = self._resolve_range(start, end)
        location = await self.geocode(city)
        await self._top_up(location.name, location, start_ts, end_ts, units)

        rows = await self.repo.get_daily_summary(location.name, start_ts, end_ts, units)
        return DailyHistoryResponse(
            city=location.name,
            units=units,
            period=format_period(start_ts, end_ts),
            days=[_summary(r) for r in rows],
        )

    async def get_trends(
        self,
        city: str,
        period: str,
        units: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> TrendResponse:
        if start is not None and end is not None:
            if start >= end:
                raise InvalidDateRangeError("start must be before end")
            if (end - start) // DAY_SECONDS > MAX_CUSTOM_RANGE_DAYS:
                raise InvalidDateRangeError(
                    f"custom range cannot exceed {MAX_CUSTOM_RANGE_DAYS} days"
                )
            start_ts, end_ts = start, end
            period = format_period(start_ts, end_ts)
        else:
            days = TREND_PERIODS.get(period)
            if days is None:
                raise InvalidDateRangeError("period must be 7d, 30d, or 90d")
            end_ts = int(time.time())
            start_ts = end_ts - days * DAY_SECONDS

        location = await self.geocode(city)
        await self._top_up(location.name, location, start_ts, end_ts, units)

        rows = await self.repo.get_daily_summary(location.name, start_ts, end_ts, units)
        daily = [_summary(r) for r in rows]
        return TrendResponse(
            city=location.name,
            units=units,
            period=period,
            days=daily,
            summary=compute_trend_summary(daily),
        )

    async def cleanup_old(self, retention_days: int) -> int:
        """Drop records older than ``retention_days``; 0 keeps everything."""
        if retention_days <= 0:
            return 0
        cutoff = int(time.time()) - retention_days * DAY_SECONDS
        return await self.repo.cleanup_old(cutoff)
