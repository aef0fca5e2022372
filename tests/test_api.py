"""
test_api.py — Tests for the HTTP surface.

Covers:
    • Job CRUD status codes (201, 404, 422) and camelCase bodies
    • Manual trigger with and without a body
    • Scheduler status including budget and last backfill
    • Device routes and the optional X-API-Key guard
    • History routes and error mapping
    • Liveness endpoint and request id / timing headers

The app is built with create_app() and its lifespan is never run: every
service is placed on app.state by the fixture, backed by tmp_path files and
in-memory doubles.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from skycast.app.core.budget import RateBudget
from skycast.app.core.config import settings
from skycast.app.core.errors import CityNotFoundError, InvalidDateRangeError
from skycast.app.devices.service import DeviceService
from skycast.app.devices.storage import DeviceStore
from skycast.app.forecast.models import (
    CurrentConditions,
    DailyForecast,
    ForecastSnapshot,
    GeoLocation,
)
from skycast.app.history.models import HistoryDataPoint, HistoryResponse
from skycast.app.main import create_app
from skycast.app.notifications.dispatcher import NotificationDispatcher
from skycast.app.notifications.models import BackendKind, BackendResult
from skycast.app.scheduler.executor import JobExecutor
from skycast.app.scheduler.service import SchedulerService
from skycast.app.scheduler.storage import JsonFileJobStore

JOB_BODY = {
    "id": "am-oslo",
    "name": "Morning Oslo",
    "city": "Oslo",
    "cron": "0 0 7 * * *",
    "timezone": "Europe/Oslo",
    "includeHourly": True,
    "notify": {"onRun": False, "coldThreshold": -5},
}


class FakeForecastService:

    async def _snapshot(self, city: str):
        if city == "Atlantis":
            raise CityNotFoundError(city)
        return ForecastSnapshot(
            location=GeoLocation(name=city, lat=0.0, lon=0.0, country="NO"),
            current=CurrentConditions(
                timestamp=0, temperature=-7.0, feels_like=-12.0,
                humidity=80, pressure=1000, wind_speed=3.0, description="snow",
            ),
            daily=[DailyForecast(timestamp=0, temp_min=-9, temp_max=-4, precipitation_probability=0.9)],
        )

    async def get_forecast(self, city, units):
        return await self._snapshot(city)

    get_daily_forecast = get_forecast
    get_hourly_forecast = get_forecast


class OkBackend:
    kind = BackendKind.GOTIFY

    async def send(self, message):
        return BackendResult(backend=self.kind, success=True)


class FakeHistoryService:

    async def get_history(self, city, start, end, units):
        if start is not None and end is not None and start >= end:
            raise InvalidDateRangeError("start must be before end")
        return HistoryResponse(
            city=city.title(), units=units, period="7d",
            data_points=[HistoryDataPoint(
                timestamp=1, temperature=1.5, feels_like=0.5,
                humidity=90, pressure=1001, wind_speed=2.0,
            )],
        )


@pytest.fixture
def client(tmp_path):
    app = create_app()
    dispatcher = NotificationDispatcher(gotify=OkBackend())
    app.state.dispatcher = dispatcher
    app.state.budget = RateBudget(25)
    app.state.scheduler_service = SchedulerService(
        JsonFileJobStore(str(tmp_path / "jobs.json")),
        JobExecutor(FakeForecastService(), dispatcher),
    )
    app.state.device_service = DeviceService(DeviceStore(str(tmp_path / "devices.json")))
    app.state.history_service = FakeHistoryService()
    app.state.backfill_engine = None
    return TestClient(app)


# ═══════════════════════════════════════════════════════════════════════════
# Scheduler routes
# ═══════════════════════════════════════════════════════════════════════════

class TestJobRoutes:

    def test_create_and_get(self, client):
        response = client.post("/api/v1/scheduler/jobs", json=JOB_BODY)
        assert response.status_code == 201
        body = response.json()
        assert body["includeHourly"] is True
        assert body["notify"]["coldThreshold"] == -5

        fetched = client.get("/api/v1/scheduler/jobs/am-oslo")
        assert fetched.status_code == 200
        assert fetched.json()["timezone"] == "Europe/Oslo"

    def test_list(self, client):
        client.post("/api/v1/scheduler/jobs", json=JOB_BODY)
        body = client.get("/api/v1/scheduler/jobs").json()
        assert body["count"] == 1
        assert body["jobs"][0]["id"] == "am-oslo"

    def test_missing_job(self, client):
        response = client.get("/api/v1/scheduler/jobs/nope")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_invalid_cron(self, client):
        response = client.post("/api/v1/scheduler/jobs", json={**JOB_BODY, "cron": "whenever"})
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_CRON"

    def test_invalid_timezone(self, client):
        response = client.post("/api/v1/scheduler/jobs", json={**JOB_BODY, "timezone": "Moon/Base"})
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_TIMEZONE"

    def test_missing_required_field(self, client):
        body = {k: v for k, v in JOB_BODY.items() if k != "city"}
        assert client.post("/api/v1/scheduler/jobs", json=body).status_code == 422

    def test_update_uses_path_id(self, client):
        client.post("/api/v1/scheduler/jobs", json=JOB_BODY)
        response = client.put(
            "/api/v1/scheduler/jobs/am-oslo",
            json={**JOB_BODY, "id": "ignored", "city": "Bergen"},
        )
        assert response.status_code == 200
        assert response.json()["id"] == "am-oslo"
        assert client.get("/api/v1/scheduler/jobs/am-oslo").json()["city"] == "Bergen"

    def test_update_missing(self, client):
        assert client.put("/api/v1/scheduler/jobs/nope", json=JOB_BODY).status_code == 404

    def test_delete(self, client):
        client.post("/api/v1/scheduler/jobs", json=JOB_BODY)
        response = client.delete("/api/v1/scheduler/jobs/am-oslo")
        assert response.json() == {"success": True, "id": "am-oslo"}
        assert client.delete("/api/v1/scheduler/jobs/am-oslo").status_code == 404


class TestTriggerAndStatus:

    def test_trigger_without_body_uses_defaults(self, client):
        response = client.post("/api/v1/scheduler/trigger")
        assert response.status_code == 200
        body = response.json()
        assert body["city"] == settings.DEFAULT_CITY
        assert body["backends"] == ["gotify"]

    def test_trigger_city(self, client):
        body = client.post("/api/v1/scheduler/trigger/Oslo?units=imperial").json()
        assert body["success"] is True
        assert body["report"]["message"]["title"] == "Oslo, NO"

    def test_trigger_unknown_city(self, client):
        response = client.post("/api/v1/scheduler/trigger", json={"city": "Atlantis"})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "CITY_NOT_FOUND"

    def test_status(self, client):
        client.post("/api/v1/scheduler/jobs", json=JOB_BODY)
        body = client.get("/api/v1/scheduler/status").json()
        assert body["running"] is False
        assert body["job_count"] == 1
        assert body["scheduled_count"] == 1
        assert body["notification_backends"] == ["gotify"]
        assert body["budget"] == {"daily_limit": 25, "used_today": 0, "remaining": 25}
        assert body["last_backfill"] is None


# ═══════════════════════════════════════════════════════════════════════════
# Device routes
# ═══════════════════════════════════════════════════════════════════════════

class TestDeviceRoutes:

    def test_register_and_count(self, client):
        response = client.post("/api/v1/devices/register", json={
            "token": "ExponentPushToken[x]", "platform": "ios", "deviceName": "iPhone",
        })
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert "deviceId" in body
        assert "message" not in body
        assert client.get("/api/v1/devices/count").json() == {"count": 1}

    def test_unregister_unknown(self, client):
        response = client.post("/api/v1/devices/unregister", json={"token": "nope"})
        assert response.status_code == 404

    def test_settings_unknown(self, client):
        response = client.put("/api/v1/devices/settings", json={"token": "nope", "enabled": False})
        assert response.status_code == 404

    def test_bad_platform(self, client):
        response = client.post("/api/v1/devices/register", json={"token": "t", "platform": "palm"})
        assert response.status_code == 422

    def test_api_key_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "DEVICE_API_KEY", "s3cret")

        missing = client.get("/api/v1/devices/count")
        assert missing.status_code == 401
        assert missing.json()["error"]["code"] == "MISSING_API_KEY"

        wrong = client.get("/api/v1/devices/count", headers={"X-API-Key": "nope"})
        assert wrong.status_code == 401
        assert wrong.json()["error"]["code"] == "INVALID_API_KEY"

        ok = client.get("/api/v1/devices/count", headers={"X-API-Key": "s3cret"})
        assert ok.status_code == 200

    def test_scheduler_routes_ignore_api_key(self, client, monkeypatch):
        monkeypatch.setattr(settings, "DEVICE_API_KEY", "s3cret")
        assert client.get("/api/v1/scheduler/jobs").status_code == 200


# ═══════════════════════════════════════════════════════════════════════════
# History routes & misc
# ═══════════════════════════════════════════════════════════════════════════

class TestHistoryRoutes:

    def test_history(self, client):
        body = client.get("/api/v1/history/oslo?units=metric").json()
        assert body["city"] == "Oslo"
        assert body["data_points"][0]["temperature"] == 1.5
        assert "rain_1h" not in body["data_points"][0]

    def test_default_units(self, client):
        body = client.get("/api/v1/history/oslo").json()
        assert body["units"] == settings.DEFAULT_UNITS

    def test_inverted_range(self, client):
        response = client.get("/api/v1/history/oslo?start=200&end=100")
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_DATE_RANGE"


class TestMisc:

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_root_lists_modules(self, client):
        assert "scheduler" in client.get("/").json()["modules"]

    def test_request_id_echoed_and_timed(self, client):
        response = client.get("/api/v1/scheduler/jobs", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"
        assert response.headers["X-Process-Time"].endswith("ms")

    def test_request_id_generated(self, client):
        assert len(client.get("/health/live").headers["X-Request-ID"]) == 16
