"""
ntfy.py — ntfy push backend (topic-based).

    POST {url}/{topic}
    Title:         message title, RFC 2047 encoded when not ASCII
    Priority:      1 (min) … 5 (urgent)
    Tags:          comma-separated, only when the message has tags
    Authorization: Bearer <token> or Basic <user:pass>, when configured
    body:          plain-text message body

Any non-2xx status is a failed delivery. See https://docs.ntfy.sh/publish/
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from skycast.app.notifications.models import (
    BackendKind,
    BackendResult,
    NTFY_PRIORITY,
    NotificationMessage,
)

logger = logging.getLogger(__name__)


def encode_header_value(value: str) -> str:
    """ASCII passes through; anything else becomes =?UTF-8?B?...?= (ntfy decodes it)."""
    if value.isascii():
        return value
    encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
    return f"=?UTF-8?B?{encoded}?="


@dataclass(frozen=True)
class NtfyAuth:
    """Either a bearer token or a username/password pair."""
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    def apply(self, headers: Dict[str, str]) -> Optional[httpx.BasicAuth]:
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
            return None
        if self.username is not None:
            return httpx.BasicAuth(self.username, self.password or "")
        return None


class NtfyBackend:
    kind = BackendKind.NTFY

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        topic: str,
        auth: Optional[NtfyAuth] = None,
    ):
        self._client = client
        self.url = url.rstrip("/")
        self.topic = topic
        self.auth = auth

    @property
    def endpoint(self) -> str:
        return f"{self.url}/{self.topic}"

    async def send(self, message: NotificationMessage) -> BackendResult:
        headers = {
            "Title": encode_header_value(message.title),
            "Priority": str(NTFY_PRIORITY[message.priority]),
        }
        if message.tags:
            headers["Tags"] = encode_header_value(",".join(message.tags))
        basic = self.auth.apply(headers) if self.auth else None

        logger.debug("[NTFY] Sending '%s' to %s", message.title, self.endpoint)
        try:
            response = await self._client.post(
                self.endpoint,
                content=message.body.encode("utf-8"),
                headers=headers,
                auth=basic if basic is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.HTTPError as exc:
            logger.error("[NTFY] Request failed: %s", exc, extra={"backend": "ntfy"})
            return BackendResult(backend=self.kind, success=False, error=str(exc))

        if response.is_success:
            return BackendResult(backend=self.kind, success=True)

        error = f"ntfy returned {response.status_code}: {response.text}"
        logger.error("[NTFY] %s", error, extra={"backend": "ntfy"})
        return BackendResult(backend=self.kind, success=False, error=error)
