"""
Data models for the notification dispatcher.

═══════════════════════════════════════════════════════════════════════════
PRIORITY MAPPING
═══════════════════════════════════════════════════════════════════════════

One abstract priority is translated into each backend's native scale.
Every backend maps every level; the maps never invert the ordering.

    Priority     Expo       ntfy    Gotify
    ────────     ────       ────    ──────
    MIN          normal     1       0
    LOW          normal     2       2
    DEFAULT      default    3       5
    HIGH         high       4       8
    URGENT       high       5       10

═══════════════════════════════════════════════════════════════════════════
OUTCOMES
═══════════════════════════════════════════════════════════════════════════

    RecipientResult   one device token inside an Expo batch
    BackendResult     one backend's outcome for one message
    DispatchReport    all configured backends for one message
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enumerations
# ═══════════════════════════════════════════════════════════════════════════

class Priority(IntEnum):
    """Backend-neutral notification priority (ordered)."""
    MIN = 1
    LOW = 2
    DEFAULT = 3
    HIGH = 4
    URGENT = 5

    @classmethod
    def parse(cls, value: Any) -> "Priority":
        if isinstance(value, Priority):
            return value
        if isinstance(value, int):
            return cls(value)
        return cls[str(value).strip().upper()]


class BackendKind(str, Enum):
    """The closed set of push backends."""
    EXPO = "expo"      # token-addressed, many devices per call
    NTFY = "ntfy"      # topic-based
    GOTIFY = "gotify"  # application-token based


class DeliveryPolicy(str, Enum):
    """When does a multi-backend send count as delivered?"""
    ANY = "any"  # at least one backend succeeded
    ALL = "all"  # every configured backend succeeded


EXPO_PRIORITY: Dict[Priority, str] = {
    Priority.MIN: "normal",
    Priority.LOW: "normal",
    Priority.DEFAULT: "default",
    Priority.HIGH: "high",
    Priority.URGENT: "high",
}

NTFY_PRIORITY: Dict[Priority, int] = {
    Priority.MIN: 1,
    Priority.LOW: 2,
    Priority.DEFAULT: 3,
    Priority.HIGH: 4,
    Priority.URGENT: 5,
}

GOTIFY_PRIORITY: Dict[Priority, int] = {
    Priority.MIN: 0,
    Priority.LOW: 2,
    Priority.DEFAULT: 5,
    Priority.HIGH: 8,
    Priority.URGENT: 10,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class NotificationMessage:
    """
    A rendered notification, independent of any backend.

    Attributes
    ----------
    title : str
    body : str
    priority : Priority
    tags : list of str
        ntfy renders these as emoji tags; other backends ignore them.
    city : str | None
        Routes Expo sends to devices subscribed to this city and is passed
        to the app for navigation.
    """
    title: str
    body: str
    priority: Priority = Priority.DEFAULT
    tags: List[str] = field(default_factory=list)
    city: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "title": self.title,
            "body": self.body,
            "priority": self.priority.name.lower(),
            "tags": list(self.tags),
        }
        if self.city is not None:
            d["city"] = self.city
        return d


@dataclass
class RecipientResult:
    """Outcome for one device token in an Expo batch."""
    recipient: str
    success: bool
    ticket_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BackendResult:
    """Outcome of sending one message through one backend."""
    backend: BackendKind
    success: bool
    error: Optional[str] = None
    recipients: List[RecipientResult] = field(default_factory=list)
    completed_at: datetime = field(default_factory=_now)

    @property
    def delivered_count(self) -> int:
        return sum(1 for r in self.recipients if r.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.recipients if not r.success)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "backend": self.backend.value,
            "success": self.success,
            "error": self.error,
            "completed_at": self.completed_at.isoformat(),
        }
        if self.backend is BackendKind.EXPO:
            d["recipients_total"] = len(self.recipients)
            d["recipients_delivered"] = self.delivered_count
            d["recipients_failed"] = self.failed_count
        return d


@dataclass
class DispatchReport:
    """Aggregated outcome of one dispatcher send across all backends."""
    message: NotificationMessage
    policy: DeliveryPolicy = DeliveryPolicy.ANY
    results: List[BackendResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> List[BackendKind]:
        return [r.backend for r in self.results if r.success]

    @property
    def failed(self) -> List[BackendKind]:
        return [r.backend for r in self.results if not r.success]

    @property
    def is_partial(self) -> bool:
        return bool(self.succeeded) and bool(self.failed)

    @property
    def success(self) -> bool:
        if not self.results:
            return False
        if self.policy is DeliveryPolicy.ALL:
            return not self.failed
        return bool(self.succeeded)

    def first_error(self) -> Optional[str]:
        for r in self.results:
            if not r.success:
                return f"{r.backend.value}: {r.error}"
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "policy": self.policy.value,
            "partial": self.is_partial,
            "message": self.message.to_dict(),
            "backends": [r.to_dict() for r in self.results],
            "started_at": self.started_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
        }
