"""Notification port — abstract interface for sending messages to users.

Core modules depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from typing import Protocol


class NotificationError(Exception):
    """Raised when a message could not be delivered to its owner."""


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def send_message(self, owner_id: str, text: str) -> None: ...
