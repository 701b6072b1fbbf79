"""
Reminder Bot — Reminder Lifecycle.

Drives a reminder through active -> fired -> (done | rescheduled).

`fire` is pure: it decides what should happen and returns the actions as
values. `run_sweep` is the only place that touches the notifier and the
store, in the order notify -> append history -> advance, so a failed
notification leaves the reminder untouched and it fires again next sweep.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo

from src.core.formatting import format_notification
from src.core.recurrence import (
    InvalidRule,
    NoRecurrence,
    next_occurrence,
    parse_rule,
    to_descriptor,
)
from src.data.models import Reminder, ReminderStatus
from src.ports.notification_port import NotificationError, NotificationPort
from src.ports.store_port import ReminderStore, StoreError

logger = logging.getLogger(__name__)


class InvalidTransition(ValueError):
    """Raised when a reminder is fired from a state that does not allow it."""


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NotificationRequest:
    owner_id: str
    reminder_id: int
    task: str
    fired_at: datetime
    recurrence_rule: str = "none"
    all_day: bool = False


@dataclass(frozen=True)
class MarkDone:
    reminder_id: int


@dataclass(frozen=True)
class AppendHistory:
    """Immutable done copy of a recurring reminder, stamped with the fired instant."""

    owner_id: str
    task: str
    fired_at: datetime
    all_day: bool = False


@dataclass(frozen=True)
class Reschedule:
    reminder_id: int
    next_trigger_at: datetime


PersistAction = MarkDone | AppendHistory | Reschedule


@dataclass(frozen=True)
class FireOutcome:
    notify: NotificationRequest
    persist: tuple[PersistAction, ...]


@dataclass
class SweepReport:
    """What one sweep did. Ids only; the reminders themselves live in the store."""

    fired: list[int] = field(default_factory=list)
    completed: list[int] = field(default_factory=list)
    rescheduled: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    @property
    def total_due(self) -> int:
        return len(self.fired) + len(self.failed)


# ---------------------------------------------------------------------------
# Pure decisions
# ---------------------------------------------------------------------------


def is_due(reminder: Reminder, now: datetime, all_day_defer: timedelta = timedelta(0)) -> bool:
    if reminder.status is not ReminderStatus.ACTIVE or reminder.trigger_at is None:
        return False
    trigger = reminder.trigger_at + all_day_defer if reminder.all_day else reminder.trigger_at
    return trigger <= now


def due_reminders(
    now: datetime,
    reminders: Iterable[Reminder],
    all_day_defer: timedelta = timedelta(0),
) -> list[Reminder]:
    """Active, timed reminders whose trigger is at or before `now`.

    All-day reminders are held back an extra `all_day_defer` past civil
    midnight. Result is ordered by trigger time.
    """
    due = [r for r in reminders if is_due(r, now, all_day_defer)]
    return sorted(due, key=lambda r: (r.trigger_at, r.id))


def fire(reminder: Reminder, now: datetime, tz: tzinfo | None = None) -> FireOutcome:
    """Decide the notification and persistence for one firing.

    One-shot reminders are marked done. Recurring reminders stay active: a
    done copy is appended to history and the trigger advances to the next
    rule match strictly after the fired instant.

    Raises:
        InvalidTransition: if the reminder is done, untimed, not yet due, or
            carries a recurrence rule that does not parse.
    """
    if reminder.status is ReminderStatus.DONE:
        raise InvalidTransition(f"Reminder {reminder.id} is already done")
    if reminder.trigger_at is None:
        raise InvalidTransition(f"Reminder {reminder.id} has no trigger time")
    if reminder.trigger_at > now:
        raise InvalidTransition(f"Reminder {reminder.id} is not due yet")

    fired_at = reminder.trigger_at
    rule = parse_rule(reminder.recurrence_rule)
    if isinstance(rule, NoRecurrence):
        descriptor = "none"
    elif isinstance(rule, InvalidRule):
        raise InvalidTransition(
            f"Reminder {reminder.id} has invalid rule '{reminder.recurrence_rule}': {rule.reason}"
        )
    else:
        descriptor = to_descriptor(rule)

    notify = NotificationRequest(
        owner_id=reminder.owner_id,
        reminder_id=reminder.id,
        task=reminder.task,
        fired_at=fired_at,
        recurrence_rule=descriptor,
        all_day=reminder.all_day,
    )

    if isinstance(rule, NoRecurrence):
        return FireOutcome(notify, (MarkDone(reminder.id),))

    return FireOutcome(
        notify,
        (
            AppendHistory(reminder.owner_id, reminder.task, fired_at, reminder.all_day),
            Reschedule(reminder.id, next_occurrence(rule, fired_at, tz)),
        ),
    )


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


async def run_sweep(
    store: ReminderStore,
    notifier: NotificationPort,
    now: datetime,
    tz: tzinfo | None = None,
    all_day_defer: timedelta = timedelta(0),
) -> SweepReport:
    """Fire every due reminder once.

    Each reminder is isolated: a failure on one is logged and the sweep moves
    on. A reminder that was down for several periods catches up one firing
    per sweep, since the advanced trigger is stepped from the fired instant.
    """
    report = SweepReport()
    for reminder in due_reminders(now, store.get_due(now), all_day_defer):
        try:
            outcome = fire(reminder, now, tz)
        except InvalidTransition as exc:
            logger.error("Skipping reminder %s: %s", reminder.id, exc)
            report.failed.append(reminder.id)
            continue

        try:
            await notifier.send_message(
                outcome.notify.owner_id, format_notification(outcome.notify, tz),
            )
        except NotificationError as exc:
            logger.warning("Notify failed for reminder %s, will retry: %s", reminder.id, exc)
            report.failed.append(reminder.id)
            continue

        try:
            store.apply_actions(outcome.persist)
        except StoreError as exc:
            logger.error("Persisting firing of reminder %s failed: %s", reminder.id, exc)
            report.failed.append(reminder.id)
            continue

        report.fired.append(reminder.id)
        for action in outcome.persist:
            if isinstance(action, MarkDone):
                report.completed.append(reminder.id)
                logger.info("Reminder %s fired and marked done", reminder.id)
            elif isinstance(action, Reschedule):
                report.rescheduled.append(reminder.id)
                logger.info(
                    "Reminder %s fired, next at %s",
                    reminder.id, action.next_trigger_at.isoformat(),
                )
    return report


def list_untimed(store: ReminderStore, owner_id: str) -> list[Reminder]:
    """Active reminders with no trigger time, for the digest."""
    return store.list_untimed(owner_id)
