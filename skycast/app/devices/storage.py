"""
JSON-file device store keyed by push token.

    {"ExponentPushToken[xxx]": {"id": ..., "platform": "ios", ...}, ...}

The whole file is rewritten on every change.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from skycast.app.core.errors import StorageError
from skycast.app.core.jsonfile import read_json, write_json_atomic
from skycast.app.devices.models import Device

logger = logging.getLogger(__name__)


class DeviceStore:
    def __init__(self, file_path: str):
        self.file_path = Path(file_path)
        self._devices: Dict[str, Device] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> None:
        raw = read_json(self.file_path, "devices")
        if raw is None:
            logger.debug("Device storage file %s does not exist, starting fresh", self.file_path)
            return
        try:
            devices = {token: Device.model_validate(data) for token, data in raw.items()}
        except (AttributeError, PydanticValidationError) as e:
            raise StorageError("devices", f"cannot read {self.file_path}: {e}") from e
        async with self._lock:
            self._devices = devices
        logger.info("Loaded %d devices from storage", len(devices))

    def _save(self) -> None:
        write_json_atomic(
            self.file_path,
            {token: d.model_dump(mode="json") for token, d in self._devices.items()},
            "devices",
        )

    async def get_by_token(self, token: str) -> Optional[Device]:
        device = self._devices.get(token)
        return device.model_copy(deep=True) if device else None

    async def get_all(self) -> List[Device]:
        return [d.model_copy(deep=True) for d in self._devices.values()]

    async def upsert(self, device: Device) -> None:
        async with self._lock:
            previous = self._devices.get(device.token)
            self._devices[device.token] = device.model_copy(deep=True)
            try:
                self._save()
            except StorageError:
                if previous is None:
                    del self._devices[device.token]
                else:
                    self._devices[device.token] = previous
                raise

    async def remove(self, token: str) -> bool:
        async with self._lock:
            previous = self._devices.pop(token, None)
            if previous is None:
                return False
            try:
                self._save()
            except StorageError:
                self._devices[token] = previous
                raise
            return True

    async def count(self) -> int:
        return len(self._devices)
