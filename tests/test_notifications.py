"""
test_notifications.py — Tests for the push backends and the dispatcher.

Covers:
    • Priority parsing and per-backend priority tables
    • Expo batching (100 per request), ticket mapping, chunk failure
    • ntfy headers and authentication
    • Gotify payload and error reporting
    • Dispatcher delivery policy (any / all), partial failure,
      nothing configured, exceptions inside a backend

All HTTP traffic goes through httpx.MockTransport; nothing leaves the process.

Run with:
    pytest tests/test_notifications.py -v
"""

from __future__ import annotations

import asyncio
import base64
import json
from typing import List, Optional

import httpx
import pytest

from skycast.app.core.config import Settings
from skycast.app.core.errors import NoBackendsConfiguredError, NotificationServiceError
from skycast.app.notifications.channels import (
    ExpoBackend,
    GotifyBackend,
    NtfyAuth,
    NtfyBackend,
)
from skycast.app.notifications.channels.ntfy import encode_header_value
from skycast.app.notifications.dispatcher import NotificationDispatcher, build_dispatcher
from skycast.app.notifications.models import (
    EXPO_PRIORITY,
    GOTIFY_PRIORITY,
    NTFY_PRIORITY,
    BackendKind,
    BackendResult,
    DeliveryPolicy,
    NotificationMessage,
    Priority,
)


def _make_message(**overrides) -> NotificationMessage:
    defaults = dict(
        title="London, GB",
        body="Now: 12°C, light rain",
        priority=Priority.DEFAULT,
        tags=["partly_sunny"],
        city="London",
    )
    defaults.update(overrides)
    return NotificationMessage(**defaults)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class StaticBackend:
    """Backend double returning a fixed outcome."""

    def __init__(self, kind: BackendKind, success: bool = True, raises: bool = False):
        self.kind = kind
        self.success = success
        self.raises = raises
        self.sent: List[NotificationMessage] = []

    async def send(self, message: NotificationMessage) -> BackendResult:
        self.sent.append(message)
        if self.raises:
            raise RuntimeError("backend exploded")
        return BackendResult(
            backend=self.kind,
            success=self.success,
            error=None if self.success else "rejected",
        )


# ═══════════════════════════════════════════════════════════════════════════
# Priority
# ═══════════════════════════════════════════════════════════════════════════

class TestPriority:

    @pytest.mark.parametrize("raw,expected", [
        ("high", Priority.HIGH),
        (" Urgent ", Priority.URGENT),
        (1, Priority.MIN),
        (Priority.LOW, Priority.LOW),
    ])
    def test_parse(self, raw, expected):
        assert Priority.parse(raw) is expected

    def test_parse_unknown_name(self):
        with pytest.raises(KeyError):
            Priority.parse("loud")

    def test_tables_cover_every_priority(self):
        for table in (EXPO_PRIORITY, NTFY_PRIORITY, GOTIFY_PRIORITY):
            assert set(table) == set(Priority)

    def test_gotify_scale(self):
        assert GOTIFY_PRIORITY[Priority.MIN] == 0
        assert GOTIFY_PRIORITY[Priority.DEFAULT] == 5
        assert GOTIFY_PRIORITY[Priority.URGENT] == 10

    def test_expo_collapses_to_three_levels(self):
        assert set(EXPO_PRIORITY.values()) == {"normal", "default", "high"}


# ═══════════════════════════════════════════════════════════════════════════
# Expo
# ═══════════════════════════════════════════════════════════════════════════

class TestExpoBackend:
    """Token batching and ticket handling."""

    def test_push_message_shape(self):
        push = ExpoBackend.build_push_message("ExponentPushToken[a]", _make_message())
        assert push["to"] == "ExponentPushToken[a]"
        assert push["sound"] == "default"
        assert push["channelId"] == "weather"
        assert push["priority"] == "default"
        assert push["data"] == {"city": "London"}

    def test_push_message_without_city_has_no_data(self):
        push = ExpoBackend.build_push_message("t", _make_message(city=None))
        assert "data" not in push

    def test_batches_of_one_hundred(self):
        batch_sizes: List[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            payload = json.loads(request.content)
            batch_sizes.append(len(payload))
            return httpx.Response(
                200, json={"data": [{"status": "ok", "id": f"t{i}"} for i in range(len(payload))]},
            )

        async def provider(city: Optional[str]) -> List[str]:
            return [f"token-{i}" for i in range(250)]

        async def run():
            async with _client(handler) as client:
                return await ExpoBackend(client, provider).send(_make_message())

        result = asyncio.run(run())
        assert batch_sizes == [100, 100, 50]
        assert result.success is True
        assert result.delivered_count == 250

    def test_error_ticket_marks_recipient_failed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": [
                {"status": "ok", "id": "abc"},
                {"status": "error", "message": "DeviceNotRegistered"},
            ]})

        async def run():
            async with _client(handler) as client:
                return await ExpoBackend(client).send_to_tokens(["a", "b"], _make_message())

        results = asyncio.run(run())
        assert results[0].success and results[0].ticket_id == "abc"
        assert not results[1].success
        assert results[1].error == "DeviceNotRegistered"

    def test_missing_ticket_is_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": [{"status": "ok"}]})

        async def run():
            async with _client(handler) as client:
                return await ExpoBackend(client).send_to_tokens(["a", "b"], _make_message())

        results = asyncio.run(run())
        assert [r.success for r in results] == [True, False]

    def test_http_error_fails_chunk_but_not_others(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(500, text="boom")
            payload = json.loads(request.content)
            return httpx.Response(200, json={"data": [{"status": "ok"}] * len(payload)})

        async def run():
            async with _client(handler) as client:
                backend = ExpoBackend(client, chunk_size=2)
                return await backend.send_to_tokens(["a", "b", "c"], _make_message())

        results = asyncio.run(run())
        assert [r.success for r in results] == [False, False, True]

    def test_all_recipients_failed_is_backend_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": [{"status": "error", "message": "nope"}]})

        async def provider(city):
            return ["only"]

        async def run():
            async with _client(handler) as client:
                return await ExpoBackend(client, provider).send(_make_message())

        result = asyncio.run(run())
        assert result.success is False
        assert result.error == "nope"

    def test_no_subscribers_is_success_without_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async def provider(city):
            return []

        async def run():
            async with _client(handler) as client:
                return await ExpoBackend(client, provider).send(_make_message())

        result = asyncio.run(run())
        assert result.success is True
        assert result.recipients == []


# ═══════════════════════════════════════════════════════════════════════════
# ntfy
# ═══════════════════════════════════════════════════════════════════════════

class TestNtfyBackend:

    def _send(self, auth: Optional[NtfyAuth] = None, status: int = 200, **message_overrides):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = request.content.decode("utf-8")
            return httpx.Response(status, text="" if status < 400 else "forbidden")

        async def run():
            async with _client(handler) as client:
                backend = NtfyBackend(client, "https://ntfy.example/", "weather", auth)
                return await backend.send(_make_message(priority=Priority.HIGH, **message_overrides))

        return asyncio.run(run()), seen

    def test_headers_and_body(self):
        result, seen = self._send()
        assert result.success
        assert seen["url"] == "https://ntfy.example/weather"
        assert seen["headers"]["Title"] == "London, GB"
        assert seen["headers"]["Priority"] == "4"
        assert seen["headers"]["Tags"] == "partly_sunny"
        assert seen["body"] == "Now: 12°C, light rain"
        assert "authorization" not in seen["headers"]

    def test_non_ascii_title_is_encoded(self):
        result, seen = self._send(title="Zürich, CH", tags=["☀"])
        assert result.success
        title = seen["headers"]["Title"]
        assert title.startswith("=?UTF-8?B?") and title.endswith("?=")
        assert base64.b64decode(title[10:-2]).decode("utf-8") == "Zürich, CH"
        assert seen["body"] == "Now: 12°C, light rain"

    def test_ascii_header_untouched(self):
        assert encode_header_value("London, GB") == "London, GB"

    def test_bearer_token(self):
        _, seen = self._send(NtfyAuth(token="tk_123"))
        assert seen["headers"]["Authorization"] == "Bearer tk_123"

    def test_basic_auth(self):
        _, seen = self._send(NtfyAuth(username="alice", password="pw"))
        expected = base64.b64encode(b"alice:pw").decode()
        assert seen["headers"]["Authorization"] == f"Basic {expected}"

    def test_http_error_reported(self):
        result, _ = self._send(status=403)
        assert result.success is False
        assert "403" in result.error


# ═══════════════════════════════════════════════════════════════════════════
# Gotify
# ═══════════════════════════════════════════════════════════════════════════

class TestGotifyBackend:

    def test_payload_and_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            seen["json"] = json.loads(request.content)
            return httpx.Response(200, json={"id": 1})

        async def run():
            async with _client(handler) as client:
                backend = GotifyBackend(client, "https://gotify.example", "app-token")
                return await backend.send(_make_message(priority=Priority.URGENT))

        result = asyncio.run(run())
        assert result.success
        assert seen["url"].path == "/message"
        assert seen["url"].params["token"] == "app-token"
        assert seen["json"] == {
            "title": "London, GB",
            "message": "Now: 12°C, light rain",
            "priority": 10,
        }

    def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async def run():
            async with _client(handler) as client:
                return await GotifyBackend(client, "https://g", "t").send(_make_message())

        result = asyncio.run(run())
        assert result.success is False
        assert "refused" in result.error


# ═══════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═══════════════════════════════════════════════════════════════════════════

class TestNotificationDispatcher:
    """Fan-out and delivery policy."""

    def test_nothing_configured_raises(self):
        dispatcher = NotificationDispatcher()
        assert dispatcher.is_configured() is False
        with pytest.raises(NoBackendsConfiguredError):
            asyncio.run(dispatcher.send(_make_message()))

    def test_any_policy_partial_success(self):
        ntfy = StaticBackend(BackendKind.NTFY, success=True)
        gotify = StaticBackend(BackendKind.GOTIFY, success=False)
        dispatcher = NotificationDispatcher(ntfy=ntfy, gotify=gotify)

        report = asyncio.run(dispatcher.send(_make_message()))
        assert report.success
        assert report.is_partial
        assert report.succeeded == [BackendKind.NTFY]
        assert report.failed == [BackendKind.GOTIFY]

    def test_all_policy_rejects_partial(self):
        dispatcher = NotificationDispatcher(
            ntfy=StaticBackend(BackendKind.NTFY, success=True),
            gotify=StaticBackend(BackendKind.GOTIFY, success=False),
            policy=DeliveryPolicy.ALL,
        )
        with pytest.raises(NotificationServiceError) as exc_info:
            asyncio.run(dispatcher.send(_make_message()))
        assert exc_info.value.report is not None
        assert exc_info.value.report.failed == [BackendKind.GOTIFY]

    def test_every_backend_attempted_even_if_one_raises(self):
        expo = StaticBackend(BackendKind.EXPO, raises=True)
        ntfy = StaticBackend(BackendKind.NTFY)
        gotify = StaticBackend(BackendKind.GOTIFY)
        dispatcher = NotificationDispatcher(expo=expo, ntfy=ntfy, gotify=gotify)

        report = asyncio.run(dispatcher.send(_make_message()))
        assert len(expo.sent) == len(ntfy.sent) == len(gotify.sent) == 1
        assert report.failed == [BackendKind.EXPO]
        assert "backend exploded" in report.first_error()

    def test_all_failed_raises_with_first_error(self):
        dispatcher = NotificationDispatcher(ntfy=StaticBackend(BackendKind.NTFY, success=False))
        with pytest.raises(NotificationServiceError) as exc_info:
            asyncio.run(dispatcher.send(_make_message()))
        assert "ntfy" in exc_info.value.message

    def test_report_to_dict(self):
        dispatcher = NotificationDispatcher(ntfy=StaticBackend(BackendKind.NTFY))
        report = asyncio.run(dispatcher.send(_make_message()))
        d = report.to_dict()
        assert d["success"] is True
        assert d["policy"] == "any"
        assert d["backends"][0]["backend"] == "ntfy"
        assert d["completed_at"] is not None

    def test_send_to_missing_backend(self):
        dispatcher = NotificationDispatcher(ntfy=StaticBackend(BackendKind.NTFY))
        with pytest.raises(NoBackendsConfiguredError):
            asyncio.run(dispatcher.send_to_one_backend(BackendKind.GOTIFY, _make_message()))


class TestBuildDispatcher:
    """Slots filled from settings."""

    def test_only_configured_backends(self):
        cfg = Settings(
            EXPO_ENABLED=False,
            NTFY_URL="https://ntfy.example",
            NTFY_TOPIC="weather",
            NTFY_USERNAME="alice",
            NTFY_PASSWORD="pw",
            GOTIFY_URL=None,
            GOTIFY_TOKEN=None,
            NOTIFY_DELIVERY_POLICY="ALL",
        )

        async def run():
            async with httpx.AsyncClient() as client:
                return build_dispatcher(client, cfg=cfg)

        dispatcher = asyncio.run(run())
        assert dispatcher.configured_backends() == [BackendKind.NTFY]
        assert dispatcher.policy is DeliveryPolicy.ALL
        ntfy = dispatcher.backend(BackendKind.NTFY)
        assert ntfy.auth.username == "alice"

    def test_expo_enabled_by_default(self):
        cfg = Settings(NTFY_URL=None, NTFY_TOPIC=None, GOTIFY_URL=None, GOTIFY_TOKEN=None)

        async def run():
            async with httpx.AsyncClient() as client:
                return build_dispatcher(client, cfg=cfg)

        assert asyncio.run(run()).configured_backends() == [BackendKind.EXPO]
