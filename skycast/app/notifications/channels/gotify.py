"""
gotify.py — Gotify push backend (application-token based).

    POST {url}/message?token=<app token>
    {"title": ..., "message": ..., "priority": 0..10}

See https://gotify.net/docs/pushmsg
"""

from __future__ import annotations

import logging

import httpx

from skycast.app.notifications.models import (
    BackendKind,
    BackendResult,
    GOTIFY_PRIORITY,
    NotificationMessage,
)

logger = logging.getLogger(__name__)


class GotifyBackend:
    kind = BackendKind.GOTIFY

    def __init__(self, client: httpx.AsyncClient, url: str, token: str):
        self._client = client
        self.url = url.rstrip("/")
        self.token = token

    async def send(self, message: NotificationMessage) -> BackendResult:
        payload = {
            "title": message.title,
            "message": message.body,
            "priority": GOTIFY_PRIORITY[message.priority],
        }
        logger.debug("[GOTIFY] Sending '%s'", message.title)
        try:
            response = await self._client.post(
                f"{self.url}/message",
                params={"token": self.token},
                json=payload,
            )
        except httpx.HTTPError as exc:
            logger.error("[GOTIFY] Request failed: %s", exc, extra={"backend": "gotify"})
            return BackendResult(backend=self.kind, success=False, error=str(exc))

        if response.is_success:
            return BackendResult(backend=self.kind, success=True)

        error = f"gotify returned {response.status_code}: {response.text}"
        logger.error("[GOTIFY] %s", error, extra={"backend": "gotify"})
        return BackendResult(backend=self.kind, success=False, error=error)
