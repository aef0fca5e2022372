"""
channels — Per-backend push delivery.

Each backend class exposes:
    kind: BackendKind
    async send(message) → BackendResult

Backends never raise for delivery failures; they report them in the result.
Fan-out and the success policy live in dispatcher.
"""

from .expo import ExpoBackend
from .gotify import GotifyBackend
from .ntfy import NtfyAuth, NtfyBackend

__all__ = ["ExpoBackend", "GotifyBackend", "NtfyAuth", "NtfyBackend"]
