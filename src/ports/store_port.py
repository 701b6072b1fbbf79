"""Store port — abstract interface for reminder persistence.

The lifecycle and the sweep depend on this protocol, never on SQLite directly.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from src.data.models import Reminder

if TYPE_CHECKING:
    from src.core.lifecycle import PersistAction


class StoreError(Exception):
    """Raised when a store operation fails. Nothing about its effect is assumed."""


class ReminderStore(Protocol):
    """Abstract reminder store used by core modules."""

    def add_reminder(
        self,
        owner_id: str,
        task: str,
        trigger_at: datetime | None,
        recurrence_rule: str = "none",
        all_day: bool = False,
    ) -> Reminder: ...

    def get_reminder(self, reminder_id: int) -> Reminder | None: ...

    def get_due(self, now: datetime) -> list[Reminder]: ...

    def list_active(self, owner_id: str) -> list[Reminder]: ...

    def list_untimed(self, owner_id: str) -> list[Reminder]: ...

    def list_history(
        self, owner_id: str, start: datetime, end: datetime, limit: int = 15
    ) -> list[Reminder]: ...

    def delete_reminders(self, owner_id: str, ids: Iterable[int]) -> int: ...

    def apply_actions(self, actions: Sequence[PersistAction]) -> None: ...
