"""
Forecast snapshot models.

Built from the OpenWeatherMap geocoding and One Call 3.0 payloads; only the
fields the scheduler and its notifications depend on are kept. Missing
optional blocks (``current``, ``hourly``, ``daily``, ``alerts``) become
None / empty lists rather than errors.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class GeoLocation:
    name: str
    lat: float
    lon: float
    country: str
    state: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "GeoLocation":
        return cls(
            name=data["name"],
            lat=float(data["lat"]),
            lon=float(data["lon"]),
            country=data.get("country", ""),
            state=data.get("state"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _first_condition(entry: Dict[str, Any]) -> Dict[str, Any]:
    conditions = entry.get("weather") or []
    return conditions[0] if conditions else {}


def _one_hour(volume: Any) -> Optional[float]:
    # Hourly blocks report {"1h": mm}; daily blocks report a bare number.
    if isinstance(volume, dict):
        return volume.get("1h")
    return volume


@dataclass
class CurrentConditions:
    timestamp: int
    temperature: float
    feels_like: float
    humidity: int
    pressure: int
    wind_speed: float
    description: str = ""
    icon: str = ""
    uv_index: float = 0.0
    clouds: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "CurrentConditions":
        cond = _first_condition(data)
        return cls(
            timestamp=int(data["dt"]),
            temperature=float(data["temp"]),
            feels_like=float(data["feels_like"]),
            humidity=int(data.get("humidity", 0)),
            pressure=int(data.get("pressure", 0)),
            wind_speed=float(data.get("wind_speed", 0.0)),
            description=cond.get("description", ""),
            icon=cond.get("icon", ""),
            uv_index=float(data.get("uvi", 0.0)),
            clouds=int(data.get("clouds", 0)),
        )


@dataclass
class HourlyForecast:
    timestamp: int
    temperature: float
    feels_like: float
    precipitation_probability: float
    description: str = ""
    rain_volume: Optional[float] = None
    snow_volume: Optional[float] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "HourlyForecast":
        return cls(
            timestamp=int(data["dt"]),
            temperature=float(data["temp"]),
            feels_like=float(data["feels_like"]),
            precipitation_probability=float(data.get("pop", 0.0)),
            description=_first_condition(data).get("description", ""),
            rain_volume=_one_hour(data.get("rain")),
            snow_volume=_one_hour(data.get("snow")),
        )


@dataclass
class DailyForecast:
    timestamp: int
    temp_min: float
    temp_max: float
    precipitation_probability: float
    summary: Optional[str] = None
    description: str = ""
    humidity: int = 0
    wind_speed: float = 0.0
    rain_volume: Optional[float] = None
    snow_volume: Optional[float] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "DailyForecast":
        temp = data.get("temp") or {}
        return cls(
            timestamp=int(data["dt"]),
            temp_min=float(temp["min"]),
            temp_max=float(temp["max"]),
            precipitation_probability=float(data.get("pop", 0.0)),
            summary=data.get("summary"),
            description=_first_condition(data).get("description", ""),
            humidity=int(data.get("humidity", 0)),
            wind_speed=float(data.get("wind_speed", 0.0)),
            rain_volume=_one_hour(data.get("rain")),
            snow_volume=_one_hour(data.get("snow")),
        )


@dataclass
class WeatherAlert:
    sender: str
    event: str
    start: int
    end: int
    description: str = ""
    tags: List[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "WeatherAlert":
        return cls(
            sender=data.get("sender_name", ""),
            event=data["event"],
            start=int(data.get("start", 0)),
            end=int(data.get("end", 0)),
            description=data.get("description", ""),
            tags=list(data.get("tags") or []),
        )


@dataclass
class ForecastSnapshot:
    """One fetch of forecast data for one location."""
    location: GeoLocation
    timezone: str = "UTC"
    current: Optional[CurrentConditions] = None
    hourly: List[HourlyForecast] = field(default_factory=list)
    daily: List[DailyForecast] = field(default_factory=list)
    alerts: List[WeatherAlert] = field(default_factory=list)

    @property
    def today(self) -> Optional[DailyForecast]:
        return self.daily[0] if self.daily else None

    @classmethod
    def from_onecall(cls, data: Dict[str, Any], location: GeoLocation) -> "ForecastSnapshot":
        current = data.get("current")
        return cls(
            location=location,
            timezone=data.get("timezone", "UTC"),
            current=CurrentConditions.from_api(current) if current else None,
            hourly=[HourlyForecast.from_api(h) for h in data.get("hourly") or []],
            daily=[DailyForecast.from_api(d) for d in data.get("daily") or []],
            alerts=[WeatherAlert.from_api(a) for a in data.get("alerts") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
