"""
dispatcher.py — Fan one notification out to every configured push backend.

═══════════════════════════════════════════════════════════════════════════
DISPATCH FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │ NotificationMessage │
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐   none configured
    │ 1. Configured slots │ ─────────────────► NoBackendsConfiguredError
    │    expo/ntfy/gotify │
    └─────────┬───────────┘
              │  concurrently, independently
              ▼
    ┌─────────────────────┐
    │ 2. backend.send()   │  a failure (or exception) in one backend never
    │    per backend      │  prevents the others from being attempted
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐   policy not met
    │ 3. Apply policy     │ ─────────────────► NotificationServiceError
    │    any | all        │                     (carries the report)
    └─────────┬───────────┘
              │
              ▼
         DispatchReport

═══════════════════════════════════════════════════════════════════════════
DELIVERY POLICY
═══════════════════════════════════════════════════════════════════════════

    any (default)   delivered if at least one backend succeeded; partial
                    failure is visible only in the report
    all             delivered only if every configured backend succeeded

The backend set is fixed at startup: the dispatcher holds one optional slot
per backend kind rather than a dynamic registry.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

import httpx

from skycast.app.core.config import Settings, settings as default_settings
from skycast.app.core.errors import NoBackendsConfiguredError, NotificationServiceError
from skycast.app.notifications.channels import (
    ExpoBackend,
    GotifyBackend,
    NtfyAuth,
    NtfyBackend,
)
from skycast.app.notifications.channels.expo import TokenProvider
from skycast.app.notifications.models import (
    BackendKind,
    BackendResult,
    DeliveryPolicy,
    DispatchReport,
    NotificationMessage,
)

logger = logging.getLogger(__name__)


class NotificationBackend(Protocol):
    kind: BackendKind

    async def send(self, message: NotificationMessage) -> BackendResult: ...


class NotificationDispatcher:
    """
    Sends a message to the configured subset of {expo, ntfy, gotify}.

    Usage:
        dispatcher = NotificationDispatcher(ntfy=NtfyBackend(client, url, topic))
        report = await dispatcher.send(message)
        report.success, report.failed
    """

    def __init__(
        self,
        *,
        expo: Optional[ExpoBackend] = None,
        ntfy: Optional[NtfyBackend] = None,
        gotify: Optional[GotifyBackend] = None,
        policy: DeliveryPolicy = DeliveryPolicy.ANY,
    ):
        self._slots: Dict[BackendKind, Optional[NotificationBackend]] = {
            BackendKind.EXPO: expo,
            BackendKind.NTFY: ntfy,
            BackendKind.GOTIFY: gotify,
        }
        self.policy = policy

    def configured_backends(self) -> List[BackendKind]:
        return [kind for kind, backend in self._slots.items() if backend is not None]

    def is_configured(self) -> bool:
        return bool(self.configured_backends())

    def backend(self, kind: BackendKind) -> Optional[NotificationBackend]:
        return self._slots.get(kind)

    @staticmethod
    async def _send_one(
        backend: NotificationBackend, message: NotificationMessage,
    ) -> BackendResult:
        try:
            return await backend.send(message)
        except Exception as exc:  # a misbehaving backend must not sink the others
            logger.exception(
                "Backend %s raised while sending '%s'",
                backend.kind.value, message.title,
                extra={"backend": backend.kind.value},
            )
            return BackendResult(backend=backend.kind, success=False, error=str(exc))

    async def send(self, message: NotificationMessage) -> DispatchReport:
        """
        Send ``message`` to every configured backend.

        Raises
        ------
        NoBackendsConfiguredError
            Nothing is configured.
        NotificationServiceError
            The delivery policy was not met; ``exc.report`` has the details.
        """
        backends = [b for b in self._slots.values() if b is not None]
        if not backends:
            raise NoBackendsConfiguredError()

        report = DispatchReport(message=message, policy=self.policy)
        results = await asyncio.gather(
            *(self._send_one(b, message) for b in backends)
        )
        report.results.extend(results)
        report.completed_at = datetime.now(timezone.utc)

        if report.is_partial:
            logger.warning(
                "Notification '%s' partially delivered: ok=%s failed=%s",
                message.title,
                [k.value for k in report.succeeded],
                [k.value for k in report.failed],
            )

        if not report.success:
            raise NotificationServiceError(
                report.first_error() or "no backend succeeded",
                report=report,
                failed=[k.value for k in report.failed],
            )

        logger.info(
            "Notification '%s' delivered via %s",
            message.title, ", ".join(k.value for k in report.succeeded),
        )
        return report

    async def send_to_one_backend(
        self, kind: BackendKind, message: NotificationMessage,
    ) -> BackendResult:
        """Targeted send; raises if that backend is absent or fails."""
        backend = self._slots.get(kind)
        if backend is None:
            raise NoBackendsConfiguredError(kind.value)
        result = await self._send_one(backend, message)
        if not result.success:
            raise NotificationServiceError(
                f"{kind.value}: {result.error}", failed=[kind.value],
            )
        return result


# ═══════════════════════════════════════════════════════════════════════════
# Factory
# ═══════════════════════════════════════════════════════════════════════════

def build_dispatcher(
    client: httpx.AsyncClient,
    token_provider: Optional[TokenProvider] = None,
    cfg: Optional[Settings] = None,
) -> NotificationDispatcher:
    """Fill the backend slots from settings."""
    cfg = cfg or default_settings

    expo = ExpoBackend(client, token_provider) if cfg.EXPO_ENABLED else None

    ntfy = None
    if cfg.ntfy_configured:
        auth = None
        if cfg.NTFY_TOKEN:
            auth = NtfyAuth(token=cfg.NTFY_TOKEN)
        elif cfg.NTFY_USERNAME:
            auth = NtfyAuth(username=cfg.NTFY_USERNAME, password=cfg.NTFY_PASSWORD)
        ntfy = NtfyBackend(client, cfg.NTFY_URL, cfg.NTFY_TOPIC, auth)

    gotify = None
    if cfg.gotify_configured:
        gotify = GotifyBackend(client, cfg.GOTIFY_URL, cfg.GOTIFY_TOKEN)

    dispatcher = NotificationDispatcher(
        expo=expo,
        ntfy=ntfy,
        gotify=gotify,
        policy=DeliveryPolicy(cfg.NOTIFY_DELIVERY_POLICY.lower()),
    )
    logger.info(
        "Notification backends configured: %s (policy=%s)",
        [k.value for k in dispatcher.configured_backends()] or "none",
        dispatcher.policy.value,
    )
    return dispatcher
