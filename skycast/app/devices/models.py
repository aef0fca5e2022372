"""
Device registry models.

Stored devices keep snake_case keys on disk; request bodies arrive in
camelCase (``deviceName``, ``appVersion``) as sent by the mobile app.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Platform(str, Enum):
    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


def _now() -> int:
    return int(time.time())


class Device(BaseModel):
    """A push-notification target registered by the mobile app."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    token: str = Field(..., min_length=1, description="Expo push token")
    platform: Platform
    device_name: Optional[str] = None
    app_version: Optional[str] = None
    cities: List[str] = Field(default_factory=list)
    units: str = "imperial"
    enabled: bool = True
    registered_at: int = Field(default_factory=_now)
    updated_at: int = Field(default_factory=_now)

    def subscribed_to(self, city: Optional[str]) -> bool:
        """No cities = subscribed to everything; matching is case-insensitive."""
        if city is None or not self.cities:
            return True
        wanted = city.strip().lower()
        return any(c.strip().lower() == wanted for c in self.cities)


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeviceRegistrationRequest(_Request):
    token: str = Field(..., min_length=1)
    platform: Platform
    device_name: Optional[str] = None
    app_version: Optional[str] = None
    cities: List[str] = Field(default_factory=list)
    units: str = "imperial"
    enabled: bool = True


class DeviceUnregisterRequest(_Request):
    token: str = Field(..., min_length=1)


class DeviceSettingsRequest(_Request):
    """Partial update: omitted fields keep their stored value."""
    token: str = Field(..., min_length=1)
    enabled: Optional[bool] = None
    cities: Optional[List[str]] = None
    units: Optional[str] = None


class TestNotificationRequest(_Request):
    token: str = Field(..., min_length=1)


class DeviceResponse(_Request):
    success: bool
    device_id: Optional[str] = None
    message: Optional[str] = None
