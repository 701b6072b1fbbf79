"""Tests for src.data.db — ReminderDB and PendingConfirmationDB (SQLite storage)."""

import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.core.lifecycle import AppendHistory, MarkDone, Reschedule, run_sweep
from src.data.db import ReminderDB
from src.data.models import PendingConfirmation, ReminderStatus
from src.ports.store_port import StoreError

CIVIL = timezone(timedelta(hours=8))


def civil(*args) -> datetime:
    return datetime(*args, tzinfo=CIVIL).astimezone(timezone.utc)


NOW = civil(2025, 12, 24, 20, 0)


class TestReminderDBAddAndGet:
    def test_add_reminder_returns_reminder(self, reminder_db):
        reminder = reminder_db.add_reminder("42", "Call mom", civil(2025, 12, 25, 21, 0))
        assert reminder.id is not None
        assert reminder.task == "Call mom"
        assert reminder.status is ReminderStatus.ACTIVE
        assert reminder.recurrence_rule == "none"

    def test_get_round_trips_fields(self, reminder_db):
        added = reminder_db.add_reminder(
            "42", "Gym", civil(2025, 12, 26, 7, 0), recurrence_rule="weekly:1,3,5", all_day=False,
        )
        fetched = reminder_db.get_reminder(added.id)
        assert fetched.owner_id == "42"
        assert fetched.trigger_at == civil(2025, 12, 26, 7, 0)
        assert fetched.trigger_at.tzinfo is not None
        assert fetched.recurrence_rule == "weekly:1,3,5"

    def test_untimed_stored_as_null(self, reminder_db, tmp_db_path):
        added = reminder_db.add_reminder("42", "Buy charger", None)
        with sqlite3.connect(tmp_db_path) as conn:
            raw = conn.execute("SELECT trigger_at FROM reminders WHERE id = ?", (added.id,)).fetchone()
        assert raw[0] is None
        assert reminder_db.get_reminder(added.id).trigger_at is None

    def test_stored_as_epoch_seconds(self, reminder_db, tmp_db_path):
        added = reminder_db.add_reminder("42", "x", datetime(2025, 1, 1, tzinfo=timezone.utc))
        with sqlite3.connect(tmp_db_path) as conn:
            raw = conn.execute("SELECT trigger_at FROM reminders WHERE id = ?", (added.id,)).fetchone()
        assert raw[0] == 1735689600

    def test_get_not_found(self, reminder_db):
        assert reminder_db.get_reminder(999) is None


class TestReminderDBQueries:
    def test_get_due(self, reminder_db):
        past = reminder_db.add_reminder("42", "past", NOW - timedelta(minutes=1))
        reminder_db.add_reminder("42", "future", NOW + timedelta(minutes=1))
        reminder_db.add_reminder("42", "untimed", None)
        assert [r.id for r in reminder_db.get_due(NOW)] == [past.id]

    def test_list_active_scoped_to_owner(self, reminder_db):
        reminder_db.add_reminder("42", "mine", NOW)
        reminder_db.add_reminder("99", "theirs", NOW)
        assert [r.task for r in reminder_db.list_active("42")] == ["mine"]

    def test_list_active_untimed_first(self, reminder_db):
        reminder_db.add_reminder("42", "timed", NOW)
        reminder_db.add_reminder("42", "untimed", None)
        assert [r.task for r in reminder_db.list_active("42")] == ["untimed", "timed"]

    def test_list_untimed_and_owners(self, reminder_db):
        reminder_db.add_reminder("42", "a", None)
        reminder_db.add_reminder("42", "b", NOW)
        reminder_db.add_reminder("7", "c", None)
        assert [r.task for r in reminder_db.list_untimed("42")] == ["a"]
        assert reminder_db.list_owners_with_untimed() == ["42", "7"]

    def test_list_history_newest_first_and_limited(self, reminder_db):
        for day in range(1, 21):
            reminder_db.apply_actions([AppendHistory("42", f"run {day}", civil(2025, 12, day, 9, 0))])
        history = reminder_db.list_history("42", civil(2025, 12, 1), NOW, limit=15)
        assert len(history) == 15
        assert history[0].task == "run 20"
        assert all(r.status is ReminderStatus.DONE for r in history)

    def test_list_history_range(self, reminder_db):
        reminder_db.apply_actions([AppendHistory("42", "old", civil(2025, 11, 1, 9, 0))])
        reminder_db.apply_actions([AppendHistory("42", "new", civil(2025, 12, 20, 9, 0))])
        history = reminder_db.list_history("42", civil(2025, 12, 1), NOW)
        assert [r.task for r in history] == ["new"]


class TestReminderDBUpdates:
    def test_mark_done_once(self, reminder_db):
        r = reminder_db.add_reminder("42", "x", NOW)
        assert reminder_db.mark_done(r.id) is True
        assert reminder_db.mark_done(r.id) is False
        assert reminder_db.get_reminder(r.id).status is ReminderStatus.DONE

    def test_update_trigger(self, reminder_db):
        r = reminder_db.add_reminder("42", "x", NOW)
        reminder_db.update_trigger(r.id, NOW + timedelta(days=1))
        assert reminder_db.get_reminder(r.id).trigger_at == NOW + timedelta(days=1)

    def test_delete_scoped_to_owner(self, reminder_db):
        mine = reminder_db.add_reminder("42", "mine", NOW)
        theirs = reminder_db.add_reminder("99", "theirs", NOW)
        assert reminder_db.delete_reminders("42", [mine.id, theirs.id]) == 1
        assert reminder_db.get_reminder(mine.id) is None
        assert reminder_db.get_reminder(theirs.id) is not None

    def test_delete_empty(self, reminder_db):
        assert reminder_db.delete_reminders("42", []) == 0

    def test_apply_actions_recurring_firing(self, reminder_db):
        r = reminder_db.add_reminder("42", "Gym", NOW, recurrence_rule="daily")
        reminder_db.apply_actions([
            AppendHistory("42", "Gym", NOW),
            Reschedule(r.id, NOW + timedelta(days=1)),
        ])
        current = reminder_db.get_reminder(r.id)
        assert current.status is ReminderStatus.ACTIVE
        assert current.trigger_at == NOW + timedelta(days=1)
        history = reminder_db.list_history("42", NOW - timedelta(days=1), NOW)
        assert [(h.task, h.trigger_at, h.recurrence_rule) for h in history] == [("Gym", NOW, "none")]

    def test_apply_actions_is_atomic(self, reminder_db):
        r = reminder_db.add_reminder("42", "Gym", NOW, recurrence_rule="daily")
        with pytest.raises(StoreError):
            reminder_db.apply_actions([
                AppendHistory("42", "Gym", NOW),
                object(),
            ])
        assert reminder_db.list_history("42", NOW - timedelta(days=1), NOW) == []
        assert reminder_db.get_reminder(r.id).trigger_at == NOW

    def test_sqlite_error_wrapped(self, reminder_db):
        with patch.object(reminder_db, "_connect", side_effect=sqlite3.OperationalError("disk I/O error")):
            with pytest.raises(StoreError):
                reminder_db.list_active("42")


class TestSchemaMigration:
    def test_adds_all_day_column(self, tmp_db_path):
        with sqlite3.connect(tmp_db_path) as conn:
            conn.execute("""
                CREATE TABLE reminders (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL,
                    task TEXT NOT NULL,
                    trigger_at INTEGER,
                    recurrence_rule TEXT NOT NULL DEFAULT 'none',
                    status TEXT NOT NULL DEFAULT 'active',
                    created_at INTEGER NOT NULL
                )
            """)
        db = ReminderDB(db_path=tmp_db_path)
        r = db.add_reminder("42", "x", NOW, all_day=True)
        assert db.get_reminder(r.id).all_day is True


class TestOneShotFiresOnce:
    @pytest.mark.asyncio
    async def test_second_sweep_does_not_fire_again(self, reminder_db):
        r = reminder_db.add_reminder("42", "Call mom", NOW - timedelta(minutes=1))
        notifier = MagicMock()
        notifier.send_message = AsyncMock()

        first = await run_sweep(reminder_db, notifier, NOW)
        second = await run_sweep(reminder_db, notifier, NOW + timedelta(minutes=1))

        assert first.fired == [r.id]
        assert second.fired == []
        assert notifier.send_message.await_count == 1
        assert reminder_db.get_reminder(r.id).status is ReminderStatus.DONE

    @pytest.mark.asyncio
    async def test_recurring_catches_up_one_firing_per_sweep(self, reminder_db):
        r = reminder_db.add_reminder(
            "42", "Stretch", NOW - timedelta(days=2), recurrence_rule="daily",
        )
        notifier = MagicMock()
        notifier.send_message = AsyncMock()

        await run_sweep(reminder_db, notifier, NOW)
        assert reminder_db.get_reminder(r.id).trigger_at == NOW - timedelta(days=1)
        await run_sweep(reminder_db, notifier, NOW)
        await run_sweep(reminder_db, notifier, NOW)

        assert reminder_db.get_reminder(r.id).trigger_at == NOW + timedelta(days=1)
        assert notifier.send_message.await_count == 3


class TestPendingConfirmationDB:
    def _pending(self, token="tok", expires_at=None):
        return PendingConfirmation(
            token=token,
            owner_id="42",
            task="Call mom",
            trigger_at=civil(2025, 12, 25, 21, 0),
            recurrence_rule="none",
            all_day=False,
            source="local",
            expires_at=expires_at or NOW + timedelta(minutes=30),
        )

    def test_save_and_get(self, pending_db):
        pending_db.save(self._pending())
        fetched = pending_db.get("tok")
        assert fetched.task == "Call mom"
        assert fetched.trigger_at == civil(2025, 12, 25, 21, 0)
        assert not fetched.is_expired(NOW)

    def test_untimed_draft(self, pending_db):
        pending = self._pending()
        pending.trigger_at = None
        pending_db.save(pending)
        assert pending_db.get("tok").trigger_at is None

    def test_delete(self, pending_db):
        pending_db.save(self._pending())
        assert pending_db.delete("tok") is True
        assert pending_db.get("tok") is None

    def test_purge_expired(self, pending_db):
        pending_db.save(self._pending("old", expires_at=NOW - timedelta(seconds=1)))
        pending_db.save(self._pending("fresh"))
        assert pending_db.purge_expired(NOW) == 1
        assert pending_db.get("old") is None
        assert pending_db.get("fresh") is not None
