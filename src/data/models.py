"""
Reminder Bot — Data Models.

Reminders persist in SQLite across restarts. Every instant held here is an
aware UTC datetime; the civil timezone only appears when text is parsed or
rendered.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ReminderStatus(Enum):
    ACTIVE = "active"
    DONE = "done"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Reminder:
    """A reminder owned by one chat user.

    trigger_at is None for untimed ("no time limit") reminders, which are only
    surfaced through the digest. For recurring reminders it is the next
    instant the rule fires.
    """

    id: int
    owner_id: str
    task: str
    trigger_at: datetime | None
    recurrence_rule: str = "none"
    all_day: bool = False
    status: ReminderStatus = ReminderStatus.ACTIVE
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_rule not in ("", "none")

    @property
    def is_timed(self) -> bool:
        return self.trigger_at is not None


@dataclass
class PendingConfirmation:
    """A resolved draft waiting for the user to tap Save or Cancel.

    Persisted with a short TTL so that any invocation (not just the one that
    built the draft) can complete the confirmation.
    """

    token: str
    owner_id: str
    task: str
    trigger_at: datetime | None
    recurrence_rule: str
    all_day: bool
    source: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
