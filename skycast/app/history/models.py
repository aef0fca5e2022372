"""History response models (hourly points, daily summaries, trends)."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from skycast.app.history.repository import HistoryRecord


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


@dataclass
class HistoryDataPoint:
    timestamp: int
    temperature: float
    feels_like: float
    humidity: int
    pressure: int
    wind_speed: float
    wind_direction: Optional[int] = None
    clouds: Optional[int] = None
    visibility: Optional[int] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    rain_1h: Optional[float] = None
    snow_1h: Optional[float] = None

    @classmethod
    def from_record(cls, r: HistoryRecord) -> "HistoryDataPoint":
        return cls(
            timestamp=r.timestamp,
            temperature=r.temperature,
            feels_like=r.feels_like,
            humidity=r.humidity,
            pressure=r.pressure,
            wind_speed=r.wind_speed,
            wind_direction=r.wind_direction,
            clouds=r.clouds,
            visibility=r.visibility,
            description=r.description,
            icon=r.icon,
            rain_1h=r.rain_1h,
            snow_1h=r.snow_1h,
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(asdict(self))


@dataclass
class DailyHistorySummary:
    date: str
    temp_min: float
    temp_max: float
    temp_avg: float
    humidity_avg: float
    wind_speed_avg: float
    precipitation_total: float
    dominant_condition: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(asdict(self))


@dataclass
class TrendExtreme:
    value: float = 0.0
    date: str = ""


@dataclass
class TrendSummary:
    avg_temp: float = 0.0
    temp_trend: str = "stable"
    max_temp: TrendExtreme = field(default_factory=TrendExtreme)
    min_temp: TrendExtreme = field(default_factory=TrendExtreme)
    total_precipitation: float = 0.0
    avg_humidity: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HistoryResponse:
    city: str
    units: str
    period: str
    data_points: List[HistoryDataPoint] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "city": self.city,
            "units": self.units,
            "period": self.period,
            "data_points": [p.to_dict() for p in self.data_points],
        }


@dataclass
class DailyHistoryResponse:
    city: str
    units: str
    period: str
    days: List[DailyHistorySummary] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "city": self.city,
            "units": self.units,
            "period": self.period,
            "days": [d.to_dict() for d in self.days],
        }


@dataclass
class TrendResponse:
    city: str
    units: str
    period: str
    days: List[DailyHistorySummary] = field(default_factory=list)
    summary: TrendSummary = field(default_factory=TrendSummary)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "city": self.city,
            "units": self.units,
            "period": self.period,
            "days": [d.to_dict() for d in self.days],
            "summary": self.summary.to_dict(),
        }
