"""
FastAPI routes: push-device registry.

Provides endpoints to:
    POST /api/v1/devices/register     — register or update a device
    POST /api/v1/devices/unregister   — remove a device
    PUT  /api/v1/devices/settings     — partial settings update
    POST /api/v1/devices/test         — send a test push
    GET  /api/v1/devices/count        — number of registered devices

Every route requires X-API-Key when DEVICE_API_KEY is configured.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from skycast.app.api.dependencies import get_device_service, require_api_key
from skycast.app.api.schemas import DeviceCountResponse, TestNotificationResponse
from skycast.app.core.errors import NotFoundError
from skycast.app.devices.models import (
    DeviceRegistrationRequest,
    DeviceResponse,
    DeviceSettingsRequest,
    DeviceUnregisterRequest,
    TestNotificationRequest,
)
from skycast.app.devices.service import DeviceService

router = APIRouter(
    prefix="/api/v1/devices",
    tags=["devices"],
    dependencies=[Depends(require_api_key)],
)


@router.post("/register", response_model=DeviceResponse, response_model_exclude_none=True)
async def register_device(
    request: DeviceRegistrationRequest,
    service: DeviceService = Depends(get_device_service),
):
    device = await service.register(request)
    return DeviceResponse(success=True, device_id=device.id)


@router.post("/unregister", response_model=DeviceResponse, response_model_exclude_none=True)
async def unregister_device(
    request: DeviceUnregisterRequest,
    service: DeviceService = Depends(get_device_service),
):
    if not await service.unregister(request.token):
        raise NotFoundError("Device")
    return DeviceResponse(success=True)


@router.put("/settings", response_model=DeviceResponse, response_model_exclude_none=True)
async def update_device_settings(
    request: DeviceSettingsRequest,
    service: DeviceService = Depends(get_device_service),
):
    device = await service.update_settings(request)
    return DeviceResponse(success=True, device_id=device.id)


@router.post("/test", response_model=TestNotificationResponse)
async def send_test_notification(
    request: TestNotificationRequest,
    service: DeviceService = Depends(get_device_service),
):
    await service.send_test(request.token)
    return {"status": "success", "message": "Test notification sent"}


@router.get("/count", response_model=DeviceCountResponse)
async def device_count(service: DeviceService = Depends(get_device_service)):
    return {"count": await service.count()}
