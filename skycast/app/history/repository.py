"""
Weather history storage — `weather_history` table (async SQLAlchemy).

═══════════════════════════════════════════════════════════════════════════
TABLE
═══════════════════════════════════════════════════════════════════════════

    weather_history
        city, lat, lon, timestamp (epoch s), temperature, feels_like,
        humidity, pressure, wind_speed, wind_direction?, clouds?,
        visibility?, description?, icon?, rain_1h?, snow_1h?,
        units, fetched_at

    UNIQUE (city, timestamp, units)   natural key; re-inserts are no-ops
    INDEX  (city, timestamp)
    INDEX  (city, units)

Daily summaries group by the UTC calendar date of ``timestamp``;
precipitation is the sum of rain + snow with missing values counted as 0.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Column,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
    delete,
    func,
    select,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from skycast.app.core.database import Base

logger = logging.getLogger(__name__)

# 19 bound parameters per row; keeps a batch under SQLite's variable limit
INSERT_CHUNK_SIZE = 50


@dataclass
class HistoryRecord:
    city: str
    lat: float
    lon: float
    timestamp: int
    temperature: float
    feels_like: float
    humidity: int
    pressure: int
    wind_speed: float
    units: str
    fetched_at: int
    wind_direction: Optional[int] = None
    clouds: Optional[int] = None
    visibility: Optional[int] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    rain_1h: Optional[float] = None
    snow_1h: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DailySummaryRow:
    date: str
    temp_min: float
    temp_max: float
    temp_avg: float
    humidity_avg: float
    wind_speed_avg: float
    precipitation_total: float
    dominant_condition: Optional[str] = None


class WeatherHistoryRow(Base):
    __tablename__ = "weather_history"
    __table_args__ = (
        UniqueConstraint("city", "timestamp", "units", name="uq_history_city_ts_units"),
        Index("idx_history_city_ts", "city", "timestamp"),
        Index("idx_history_city_units", "city", "units"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    city = Column(String, nullable=False)
    lat = Column(Float, nullable=False)
    lon = Column(Float, nullable=False)
    timestamp = Column(Integer, nullable=False)
    temperature = Column(Float, nullable=False)
    feels_like = Column(Float, nullable=False)
    humidity = Column(Integer, nullable=False)
    pressure = Column(Integer, nullable=False)
    wind_speed = Column(Float, nullable=False)
    wind_direction = Column(Integer)
    clouds = Column(Integer)
    visibility = Column(Integer)
    description = Column(String)
    icon = Column(String)
    rain_1h = Column(Float)
    snow_1h = Column(Float)
    units = Column(String, nullable=False, default="metric")
    fetched_at = Column(Integer, nullable=False)

    def to_record(self) -> HistoryRecord:
        return HistoryRecord(
            city=self.city,
            lat=self.lat,
            lon=self.lon,
            timestamp=self.timestamp,
            temperature=self.temperature,
            feels_like=self.feels_like,
            humidity=self.humidity,
            pressure=self.pressure,
            wind_speed=self.wind_speed,
            units=self.units,
            fetched_at=self.fetched_at,
            wind_direction=self.wind_direction,
            clouds=self.clouds,
            visibility=self.visibility,
            description=self.description,
            icon=self.icon,
            rain_1h=self.rain_1h,
            snow_1h=self.snow_1h,
        )


def _in_range(city: str, start_ts: int, end_ts: int, units: str):
    return (
        WeatherHistoryRow.city == city,
        WeatherHistoryRow.timestamp >= start_ts,
        WeatherHistoryRow.timestamp <= end_ts,
        WeatherHistoryRow.units == units,
    )


class HistoryRepository:
    """
    Usage:
        repo = HistoryRepository(async_session_factory)
        inserted = await repo.insert_batch(records)
        missing = await repo.get_missing_timestamps("Chicago", start, end, 3600, "metric")
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_range(
        self, city: str, start_ts: int, end_ts: int, units: str,
    ) -> List[HistoryRecord]:
        stmt = (
            select(WeatherHistoryRow)
            .where(*_in_range(city, start_ts, end_ts, units))
            .order_by(WeatherHistoryRow.timestamp.asc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [row.to_record() for row in rows]

    async def get_daily_summary(
        self, city: str, start_ts: int, end_ts: int, units: str,
    ) -> List[DailySummaryRow]:
        day = func.date(WeatherHistoryRow.timestamp, "unixepoch")
        precipitation = func.coalesce(WeatherHistoryRow.rain_1h, 0.0) + func.coalesce(
            WeatherHistoryRow.snow_1h, 0.0,
        )
        aggregate = (
            select(
                day.label("date"),
                func.min(WeatherHistoryRow.temperature),
                func.max(WeatherHistoryRow.temperature),
                func.avg(WeatherHistoryRow.temperature),
                func.avg(WeatherHistoryRow.humidity),
                func.avg(WeatherHistoryRow.wind_speed),
                func.coalesce(func.sum(precipitation), 0.0),
            )
            .where(*_in_range(city, start_ts, end_ts, units))
            .group_by(day)
            .order_by(day.asc())
        )
        conditions = (
            select(day, WeatherHistoryRow.description, func.count().label("n"))
            .where(*_in_range(city, start_ts, end_ts, units))
            .where(WeatherHistoryRow.description.is_not(None))
            .group_by(day, WeatherHistoryRow.description)
            .order_by(day.asc(), func.count().desc(), WeatherHistoryRow.description.asc())
        )

        async with self._session_factory() as session:
            rows = (await session.execute(aggregate)).all()
            dominant: Dict[str, str] = {}
            for date, description, _count in (await session.execute(conditions)).all():
                dominant.setdefault(date, description)

        return [
            DailySummaryRow(
                date=date,
                temp_min=float(t_min),
                temp_max=float(t_max),
                temp_avg=float(t_avg),
                humidity_avg=float(h_avg),
                wind_speed_avg=float(w_avg),
                precipitation_total=float(precip),
                dominant_condition=dominant.get(date),
            )
            for date, t_min, t_max, t_avg, h_avg, w_avg, precip in rows
        ]

    async def insert_batch(self, records: Iterable[HistoryRecord]) -> int:
        """Insert, skipping natural-key duplicates. Returns rows actually inserted."""
        values = [r.to_dict() for r in records]
        if not values:
            return 0

        inserted = 0
        async with self._session_factory() as session:
            for i in range(0, len(values), INSERT_CHUNK_SIZE):
                stmt = (
                    sqlite_insert(WeatherHistoryRow)
                    .values(values[i:i + INSERT_CHUNK_SIZE])
                    .on_conflict_do_nothing(index_elements=["city", "timestamp", "units"])
                )
                result = await session.execute(stmt)
                inserted += max(result.rowcount, 0)
            await session.commit()
        return inserted

    async def has_data(self, city: str, timestamp: int, units: str) -> bool:
        stmt = select(func.count()).select_from(WeatherHistoryRow).where(
            WeatherHistoryRow.city == city,
            WeatherHistoryRow.timestamp == timestamp,
            WeatherHistoryRow.units == units,
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one() > 0

    async def get_missing_timestamps(
        self,
        city: str,
        start_ts: int,
        end_ts: int,
        interval_secs: int,
        units: str,
    ) -> List[int]:
        """Expected points start, start+step, … ≤ end that have no stored row."""
        if interval_secs <= 0:
            raise ValueError("interval_secs must be positive")

        stmt = select(WeatherHistoryRow.timestamp).where(
            *_in_range(city, start_ts, end_ts, units),
        )
        async with self._session_factory() as session:
            existing = set((await session.execute(stmt)).scalars().all())

        return [
            ts for ts in range(start_ts, end_ts + 1, interval_secs)
            if ts not in existing
        ]

    async def cleanup_old(self, before_ts: int) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(WeatherHistoryRow).where(WeatherHistoryRow.timestamp < before_ts)
            )
            await session.commit()
        deleted = result.rowcount
        if deleted:
            logger.info("Removed %d history records older than %d", deleted, before_ts)
        return deleted
