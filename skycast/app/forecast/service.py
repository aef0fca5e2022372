"""
Forecast & geocoding collaborator — OpenWeatherMap One Call 3.0.

═══════════════════════════════════════════════════════════════════════════
ENDPOINTS
═══════════════════════════════════════════════════════════════════════════

    Geocoding (city)   https://api.openweathermap.org/geo/1.0/direct
    Geocoding (zip)    https://api.openweathermap.org/geo/1.0/zip
    One Call 3.0       https://api.openweathermap.org/data/3.0/onecall

Location input is either a city name ("Chicago", "Paris,FR") or a zip code
("60601", "60601,US"). A zip without a country is looked up in the US.

Geocoding results are memoised in the shared ExpiringCache (24 h TTL) under
the normalised input, so "Chicago" and " CHICAGO " cost one upstream call.

Error mapping:
    401                 → SubscriptionRequiredError (One Call needs a plan)
    other non-2xx       → ExternalServiceError
    transport failure   → ExternalServiceError
    empty geocode list  → CityNotFoundError
    malformed payload   → ExternalServiceError

No retries here: the scheduler's next tick is the retry.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from skycast.app.core.cache import ExpiringCache, create_geo_cache, normalize_cache_key
from skycast.app.core.config import settings
from skycast.app.core.errors import (
    CityNotFoundError,
    ExternalServiceError,
    SubscriptionRequiredError,
)
from skycast.app.forecast.models import ForecastSnapshot, GeoLocation

logger = logging.getLogger(__name__)

GEOCODING_API_URL = "https://api.openweathermap.org/geo/1.0/direct"
ZIP_GEOCODING_API_URL = "https://api.openweathermap.org/geo/1.0/zip"
ONE_CALL_API_URL = "https://api.openweathermap.org/data/3.0/onecall"

SERVICE_NAME = "openweathermap"


def is_zip_code(location: str) -> bool:
    """True for "60601" or "60601,US"."""
    parts = location.split(",")
    if len(parts) not in (1, 2):
        return False
    zip_part = parts[0].strip()
    return bool(zip_part) and zip_part.isdigit() and zip_part.isascii()


class OpenWeatherClient:
    """Shared HTTP plumbing for the OpenWeatherMap services."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENWEATHERMAP_API_KEY
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def get_json(self, url: str, params: Dict[str, Any]) -> Any:
        client = await self._get_client()
        try:
            response = await client.get(url, params={**params, "appid": self.api_key})
        except httpx.HTTPError as e:
            raise ExternalServiceError(SERVICE_NAME, str(e)) from e

        if response.status_code == 401:
            raise SubscriptionRequiredError(SERVICE_NAME)
        if not response.is_success:
            raise ExternalServiceError(
                SERVICE_NAME, response.text, status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError(SERVICE_NAME, f"invalid JSON: {e}") from e


def _parse_location(data: Any) -> GeoLocation:
    try:
        return GeoLocation.from_api(data)
    except (KeyError, TypeError, ValueError, IndexError) as e:
        raise ExternalServiceError(SERVICE_NAME, f"unexpected geocoding payload: {e}") from e


class Geocoder:
    """City / zip → coordinates, backed by the geocoding cache."""

    def __init__(
        self,
        api: OpenWeatherClient,
        cache: Optional[ExpiringCache] = None,
    ):
        self._api = api
        self.cache = cache if cache is not None else create_geo_cache()

    async def geocode(self, location: str) -> GeoLocation:
        key = normalize_cache_key(location)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Geocoding cache hit for %s", location)
            return cached

        logger.debug("Geocoding cache miss for %s", location)
        if is_zip_code(location):
            result = await self._geocode_zip(location)
        else:
            result = await self._geocode_city(location)

        self.cache.insert(key, result)
        return result

    async def _geocode_city(self, city: str) -> GeoLocation:
        data = await self._api.get_json(
            GEOCODING_API_URL, {"q": city.strip(), "limit": 1},
        )
        if not data:
            raise CityNotFoundError(city)
        return _parse_location(data[0] if isinstance(data, list) else data)

    async def _geocode_zip(self, zip_code: str) -> GeoLocation:
        query = zip_code.strip()
        if "," not in query:
            query = f"{query},US"
        try:
            data = await self._api.get_json(ZIP_GEOCODING_API_URL, {"zip": query})
        except ExternalServiceError as e:
            if e.details.get("status_code") == 404:
                raise CityNotFoundError(zip_code) from e
            raise
        return _parse_location(data)


class ForecastService:
    """
    Forecast provider used by the scheduler.

    Usage:
        service = ForecastService(geocoder, api)
        snapshot = await service.get_daily_forecast("Chicago", "imperial")
        snapshot.location.name, snapshot.today.temp_max
    """

    def __init__(self, geocoder: Geocoder, api: OpenWeatherClient):
        self.geocoder = geocoder
        self._api = api

    async def geocode(self, location: str) -> GeoLocation:
        return await self.geocoder.geocode(location)

    async def _onecall(
        self, location: GeoLocation, units: str, exclude: str,
    ) -> ForecastSnapshot:
        logger.debug(
            "Fetching forecast for %s (%.4f, %.4f)",
            location.name, location.lat, location.lon,
            extra={"city": location.name},
        )
        data = await self._api.get_json(
            ONE_CALL_API_URL,
            {
                "lat": location.lat,
                "lon": location.lon,
                "units": units,
                "exclude": exclude,
            },
        )
        try:
            return ForecastSnapshot.from_onecall(data, location)
        except (KeyError, TypeError, ValueError) as e:
            raise ExternalServiceError(SERVICE_NAME, f"unexpected payload: {e}") from e

    async def get_forecast(self, city: str, units: str) -> ForecastSnapshot:
        """Current + 48 h hourly + 8 day daily + alerts."""
        location = await self.geocode(city)
        return await self._onecall(location, units, "minutely")

    async def get_daily_forecast(self, city: str, units: str) -> ForecastSnapshot:
        """Current + daily + alerts, without the hourly block."""
        location = await self.geocode(city)
        return await self._onecall(location, units, "minutely,hourly")

    async def get_hourly_forecast(self, city: str, units: str) -> ForecastSnapshot:
        location = await self.geocode(city)
        return await self._onecall(location, units, "minutely,daily")
