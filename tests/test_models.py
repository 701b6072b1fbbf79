"""Tests for src.data.models — Reminder and PendingConfirmation dataclasses."""

from dataclasses import asdict
from datetime import datetime, timedelta, timezone

from src.data.models import PendingConfirmation, Reminder, ReminderStatus

NOW = datetime(2025, 12, 24, 12, 0, tzinfo=timezone.utc)


def test_reminder_defaults():
    reminder = Reminder(id=1, owner_id="42", task="Call mom", trigger_at=NOW)
    assert reminder.recurrence_rule == "none"
    assert reminder.all_day is False
    assert reminder.status is ReminderStatus.ACTIVE
    assert reminder.created_at.tzinfo is not None


def test_reminder_untimed():
    reminder = Reminder(id=2, owner_id="42", task="Buy charger", trigger_at=None)
    assert reminder.is_timed is False
    assert reminder.is_recurring is False


def test_reminder_recurring():
    reminder = Reminder(id=3, owner_id="42", task="Gym", trigger_at=NOW, recurrence_rule="weekly:1,3,5")
    assert reminder.is_recurring is True
    assert reminder.is_timed is True


def test_empty_rule_is_not_recurring():
    reminder = Reminder(id=4, owner_id="42", task="x", trigger_at=NOW, recurrence_rule="")
    assert reminder.is_recurring is False


def test_reminder_serializable():
    reminder = Reminder(id=5, owner_id="42", task="x", trigger_at=NOW)
    d = asdict(reminder)
    assert d["task"] == "x"
    assert d["status"] is ReminderStatus.ACTIVE


def test_status_values():
    assert ReminderStatus("active") is ReminderStatus.ACTIVE
    assert ReminderStatus("done") is ReminderStatus.DONE


def _pending(expires_at):
    return PendingConfirmation(
        token="tok",
        owner_id="42",
        task="Call mom",
        trigger_at=NOW,
        recurrence_rule="none",
        all_day=False,
        source="local",
        expires_at=expires_at,
    )


def test_pending_not_expired_before_deadline():
    assert not _pending(NOW + timedelta(minutes=30)).is_expired(NOW)


def test_pending_expired_at_deadline():
    assert _pending(NOW).is_expired(NOW)
