"""
DeviceService — registration, settings and city subscriptions.

The Expo backend asks this service which tokens should receive a message
(``tokens_for_city``); the backfill engine reads subscribed cities from it.
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional

import httpx

from skycast.app.core.errors import NotFoundError, NotificationServiceError
from skycast.app.devices.models import (
    Device,
    DeviceRegistrationRequest,
    DeviceSettingsRequest,
)
from skycast.app.devices.storage import DeviceStore
from skycast.app.notifications.channels import ExpoBackend
from skycast.app.notifications.models import NotificationMessage, Priority

logger = logging.getLogger(__name__)


class DeviceService:
    """
    Usage:
        service = DeviceService(DeviceStore("data/devices.json"), client)
        await service.init()
        device = await service.register(request)
        tokens = await service.tokens_for_city("Chicago")
    """

    def __init__(self, store: DeviceStore, client: Optional[httpx.AsyncClient] = None):
        self.store = store
        self._client = client
        self._expo: Optional[ExpoBackend] = None

    async def init(self) -> None:
        await self.store.load()
        logger.info("Devices service initialised with %d devices", await self.store.count())

    async def register(self, request: DeviceRegistrationRequest) -> Device:
        """Create a device, or update the one already holding this token."""
        now = int(time.time())
        existing = await self.store.get_by_token(request.token)
        fields = request.model_dump(exclude={"token"})

        if existing is not None:
            device = existing.model_copy(update={**fields, "updated_at": now})
        else:
            device = Device(token=request.token, registered_at=now, updated_at=now, **fields)

        await self.store.upsert(device)
        logger.info("Device %s registered (%s)", device.id, device.platform.value)
        return device

    async def unregister(self, token: str) -> bool:
        removed = await self.store.remove(token)
        if removed:
            logger.info("Device unregistered")
        return removed

    async def update_settings(self, request: DeviceSettingsRequest) -> Device:
        device = await self.store.get_by_token(request.token)
        if device is None:
            raise NotFoundError("Device")

        changes = request.model_dump(exclude={"token"}, exclude_none=True)
        device = device.model_copy(update={**changes, "updated_at": int(time.time())})
        await self.store.upsert(device)
        logger.info("Device %s settings updated", device.id)
        return device

    async def get_by_token(self, token: str) -> Optional[Device]:
        return await self.store.get_by_token(token)

    async def get_all(self) -> List[Device]:
        return await self.store.get_all()

    async def get_enabled(self) -> List[Device]:
        return [d for d in await self.store.get_all() if d.enabled]

    async def get_by_city(self, city: str) -> List[Device]:
        return [d for d in await self.get_enabled() if d.subscribed_to(city)]

    async def tokens_for_city(self, city: Optional[str]) -> List[str]:
        return [d.token for d in await self.get_enabled() if d.subscribed_to(city)]

    async def count(self) -> int:
        return await self.store.count()

    def _expo_backend(self) -> ExpoBackend:
        if self._expo is None:
            self._expo = ExpoBackend(self._client or httpx.AsyncClient(timeout=30.0))
        return self._expo

    async def send_test(self, token: str) -> None:
        """Push a test message to one registered device."""
        if await self.store.get_by_token(token) is None:
            raise NotFoundError("Device")

        message = NotificationMessage(
            title="Test Notification",
            body="Push notifications are working!",
            priority=Priority.DEFAULT,
        )
        results = await self._expo_backend().send_to_tokens([token], message)
        failed = next((r for r in results if not r.success), None)
        if failed is not None:
            raise NotificationServiceError(failed.error or "Expo rejected the message")
