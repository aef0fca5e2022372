"""
expo.py — Expo push notification backend (token-addressed, many devices).

Delivery mechanism:
    • POST https://exp.host/--/api/v2/push/send with a JSON array of messages
    • One message per device token, at most 100 per request
    • The response carries one ticket per message, in request order

Outcome aggregation:
    • ticket.status == "ok"            → that recipient delivered
    • ticket.status == "error"         → that recipient failed (ticket message)
    • HTTP error / network error / bad JSON for a chunk
                                        → every recipient in the chunk failed,
                                          other chunks are still attempted

The backend succeeds when at least one recipient was delivered. A send with
no subscribed devices is a success with zero deliveries: nobody was missed.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from skycast.app.notifications.models import (
    BackendKind,
    BackendResult,
    EXPO_PRIORITY,
    NotificationMessage,
    RecipientResult,
)

logger = logging.getLogger(__name__)

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"
CHUNK_SIZE = 100
CHANNEL_ID = "weather"
TICKET_TTL_SECONDS = 3600

# Resolves the device tokens that should receive a message for a city
# (None = every enabled device).
TokenProvider = Callable[[Optional[str]], Awaitable[List[str]]]


def _chunks(items: List[str], size: int) -> List[List[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class ExpoBackend:
    kind = BackendKind.EXPO

    def __init__(
        self,
        client: httpx.AsyncClient,
        token_provider: Optional[TokenProvider] = None,
        *,
        url: str = EXPO_PUSH_URL,
        chunk_size: int = CHUNK_SIZE,
    ):
        self._client = client
        self._token_provider = token_provider
        self._url = url
        self._chunk_size = chunk_size

    @staticmethod
    def build_push_message(token: str, message: NotificationMessage) -> Dict[str, Any]:
        push: Dict[str, Any] = {
            "to": token,
            "title": message.title,
            "body": message.body,
            "priority": EXPO_PRIORITY[message.priority],
            "sound": "default",
            "channelId": CHANNEL_ID,
            "ttl": TICKET_TTL_SECONDS,
        }
        if message.city:
            push["data"] = {"city": message.city}
        return push

    async def _post_chunk(
        self, chunk: List[str], message: NotificationMessage,
    ) -> List[RecipientResult]:
        payload = [self.build_push_message(token, message) for token in chunk]
        try:
            response = await self._client.post(
                self._url,
                json=payload,
                headers={
                    "Accept": "application/json",
                    "Accept-Encoding": "gzip, deflate",
                },
            )
            if response.status_code >= 400:
                raise httpx.HTTPStatusError(
                    f"Expo API returned {response.status_code}: {response.text}",
                    request=response.request,
                    response=response,
                )
            tickets = response.json().get("data", [])
        except (httpx.HTTPError, ValueError, AttributeError) as exc:
            logger.error(
                "[EXPO] Batch of %d failed: %s", len(chunk), exc,
                extra={"backend": "expo", "recipient_count": len(chunk)},
            )
            return [
                RecipientResult(recipient=token, success=False, error=str(exc))
                for token in chunk
            ]

        results: List[RecipientResult] = []
        for i, token in enumerate(chunk):
            ticket = tickets[i] if i < len(tickets) else None
            if ticket is None:
                results.append(RecipientResult(
                    recipient=token, success=False,
                    error="No ticket in Expo response",
                ))
            elif ticket.get("status") == "ok":
                results.append(RecipientResult(
                    recipient=token, success=True, ticket_id=ticket.get("id"),
                ))
            else:
                results.append(RecipientResult(
                    recipient=token, success=False,
                    error=ticket.get("message") or "Unknown error",
                ))
        return results

    async def send_to_tokens(
        self, tokens: List[str], message: NotificationMessage,
    ) -> List[RecipientResult]:
        """Send to explicit tokens, batching 100 per request."""
        results: List[RecipientResult] = []
        for chunk in _chunks(tokens, self._chunk_size):
            results.extend(await self._post_chunk(chunk, message))

        delivered = sum(1 for r in results if r.success)
        logger.info(
            "[EXPO] Sent batch push notifications: %d/%d delivered",
            delivered, len(tokens),
            extra={"backend": "expo", "recipient_count": len(tokens)},
        )
        return results

    async def send(self, message: NotificationMessage) -> BackendResult:
        tokens: List[str] = []
        if self._token_provider is not None:
            tokens = await self._token_provider(message.city)

        if not tokens:
            logger.debug("[EXPO] No devices subscribed for %s", message.city)
            return BackendResult(backend=self.kind, success=True)

        recipients = await self.send_to_tokens(tokens, message)
        delivered = any(r.success for r in recipients)
        error = None
        if not delivered:
            error = next((r.error for r in recipients if r.error), "all recipients failed")
        return BackendResult(
            backend=self.kind,
            success=delivered,
            error=error,
            recipients=recipients,
        )
