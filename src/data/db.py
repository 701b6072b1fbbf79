"""
Reminder Bot — Reminder Database.

Reminders and pending confirmations persist in SQLite across restarts.
Instants are stored as UTC epoch seconds; NULL trigger_at means "no time
limit". Every sqlite3 failure surfaces as StoreError.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from src.core.lifecycle import AppendHistory, MarkDone, PersistAction, Reschedule
from src.core.time_resolver import from_timestamp, to_timestamp
from src.data.models import PendingConfirmation, Reminder, ReminderStatus
from src.ports.store_port import StoreError

logger = logging.getLogger(__name__)


class _SQLiteStore:
    """Connection handling shared by the tables below."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection; commit on success, roll back and raise StoreError on failure."""
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open database {self._db_path}: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    def _init_db(self) -> None:
        raise NotImplementedError


class ReminderDB(_SQLiteStore):
    """SQLite-backed storage for reminders and their done history."""

    def _init_db(self) -> None:
        """Create the reminders table if it doesn't exist, and migrate schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reminders (
                    id              INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id        TEXT    NOT NULL,
                    task            TEXT    NOT NULL,
                    trigger_at      INTEGER,
                    recurrence_rule TEXT    NOT NULL DEFAULT 'none',
                    status          TEXT    NOT NULL DEFAULT 'active',
                    created_at      INTEGER NOT NULL
                )
            """)
            # Migrate existing DBs: add new columns if missing
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(reminders)").fetchall()
            }
            if "all_day" not in existing_cols:
                conn.execute(
                    "ALTER TABLE reminders ADD COLUMN all_day INTEGER NOT NULL DEFAULT 0"
                )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_reminders_due "
                "ON reminders (status, trigger_at)"
            )
        logger.debug("Reminders table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_reminder(row: sqlite3.Row) -> Reminder:
        trigger = row["trigger_at"]
        return Reminder(
            id=row["id"],
            owner_id=row["owner_id"],
            task=row["task"],
            trigger_at=from_timestamp(trigger) if trigger is not None else None,
            recurrence_rule=row["recurrence_rule"],
            all_day=bool(row["all_day"]),
            status=ReminderStatus(row["status"]),
            created_at=from_timestamp(row["created_at"]),
        )

    @staticmethod
    def _ts(instant: datetime | None) -> int | None:
        return to_timestamp(instant) if instant is not None else None

    def _insert(
        self,
        conn: sqlite3.Connection,
        owner_id: str,
        task: str,
        trigger_at: datetime | None,
        recurrence_rule: str,
        all_day: bool,
        status: ReminderStatus,
    ) -> Reminder:
        created = Reminder(
            id=0, owner_id=owner_id, task=task, trigger_at=trigger_at,
            recurrence_rule=recurrence_rule, all_day=all_day, status=status,
        )
        cursor = conn.execute(
            """
            INSERT INTO reminders
                (owner_id, task, trigger_at, recurrence_rule, all_day, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                owner_id, task, self._ts(trigger_at), recurrence_rule,
                int(all_day), status.value, to_timestamp(created.created_at),
            ),
        )
        created.id = cursor.lastrowid
        return created

    def add_reminder(
        self,
        owner_id: str,
        task: str,
        trigger_at: datetime | None,
        recurrence_rule: str = "none",
        all_day: bool = False,
    ) -> Reminder:
        """Insert a new active reminder."""
        with self._transaction() as conn:
            reminder = self._insert(
                conn, owner_id, task, trigger_at, recurrence_rule, all_day,
                ReminderStatus.ACTIVE,
            )
        logger.info(
            "Reminder added: #%d '%s' for %s (rule=%s)",
            reminder.id, task, owner_id, recurrence_rule,
        )
        return reminder

    def get_reminder(self, reminder_id: int) -> Reminder | None:
        """Fetch a single reminder by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM reminders WHERE id = ?", (reminder_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_reminder(row)

    def _select(self, query: str, params: Sequence) -> list[Reminder]:
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_reminder(r) for r in rows]

    def get_due(self, now: datetime) -> list[Reminder]:
        """Active, timed reminders with trigger_at <= now, oldest first."""
        return self._select(
            "SELECT * FROM reminders WHERE status = 'active' "
            "AND trigger_at IS NOT NULL AND trigger_at <= ? "
            "ORDER BY trigger_at, id",
            (to_timestamp(now),),
        )

    def list_active(self, owner_id: str) -> list[Reminder]:
        """All active reminders of an owner, untimed first, then by trigger."""
        return self._select(
            "SELECT * FROM reminders WHERE status = 'active' AND owner_id = ? "
            "ORDER BY trigger_at IS NOT NULL, trigger_at, id",
            (owner_id,),
        )

    def list_untimed(self, owner_id: str) -> list[Reminder]:
        return self._select(
            "SELECT * FROM reminders WHERE status = 'active' AND owner_id = ? "
            "AND trigger_at IS NULL ORDER BY id",
            (owner_id,),
        )

    def list_owners_with_untimed(self) -> list[str]:
        """Owners that have at least one active untimed reminder."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT DISTINCT owner_id FROM reminders "
                "WHERE status = 'active' AND trigger_at IS NULL ORDER BY owner_id"
            ).fetchall()
        return [r["owner_id"] for r in rows]

    def list_history(
        self, owner_id: str, start: datetime, end: datetime, limit: int = 15,
    ) -> list[Reminder]:
        """Done records fired within [start, end], newest first."""
        return self._select(
            "SELECT * FROM reminders WHERE status = 'done' AND owner_id = ? "
            "AND trigger_at BETWEEN ? AND ? ORDER BY trigger_at DESC, id DESC LIMIT ?",
            (owner_id, to_timestamp(start), to_timestamp(end), limit),
        )

    def mark_done(self, reminder_id: int) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE reminders SET status = 'done' WHERE id = ? AND status = 'active'",
                (reminder_id,),
            )
        return cursor.rowcount > 0

    def update_trigger(self, reminder_id: int, trigger_at: datetime) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE reminders SET trigger_at = ? WHERE id = ?",
                (to_timestamp(trigger_at), reminder_id),
            )
        return cursor.rowcount > 0

    def delete_reminders(self, owner_id: str, ids: Iterable[int]) -> int:
        """Hard-delete the given reminders; ids owned by someone else are ignored."""
        id_list = sorted({int(i) for i in ids})
        if not id_list:
            return 0
        placeholders = ",".join("?" for _ in id_list)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"DELETE FROM reminders WHERE owner_id = ? AND id IN ({placeholders})",
                (owner_id, *id_list),
            )
        logger.info("Deleted %d reminder(s) for %s", cursor.rowcount, owner_id)
        return cursor.rowcount

    def apply_actions(self, actions: Sequence[PersistAction]) -> None:
        """Apply the persist actions of one firing in a single transaction."""
        with self._transaction() as conn:
            for action in actions:
                if isinstance(action, MarkDone):
                    conn.execute(
                        "UPDATE reminders SET status = 'done' WHERE id = ?",
                        (action.reminder_id,),
                    )
                elif isinstance(action, AppendHistory):
                    self._insert(
                        conn, action.owner_id, action.task, action.fired_at,
                        "none", action.all_day, ReminderStatus.DONE,
                    )
                elif isinstance(action, Reschedule):
                    conn.execute(
                        "UPDATE reminders SET trigger_at = ? WHERE id = ?",
                        (to_timestamp(action.next_trigger_at), action.reminder_id),
                    )
                else:
                    raise StoreError(f"Unknown persist action: {action!r}")


class PendingConfirmationDB(_SQLiteStore):
    """Short-lived drafts awaiting the user's Save / Cancel tap."""

    def _init_db(self) -> None:
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS pending_confirmations (
                    token           TEXT    PRIMARY KEY,
                    owner_id        TEXT    NOT NULL,
                    task            TEXT    NOT NULL,
                    trigger_at      INTEGER,
                    recurrence_rule TEXT    NOT NULL DEFAULT 'none',
                    all_day         INTEGER NOT NULL DEFAULT 0,
                    source          TEXT    NOT NULL DEFAULT '',
                    expires_at      INTEGER NOT NULL
                )
            """)
        logger.debug("Pending confirmations table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_pending(row: sqlite3.Row) -> PendingConfirmation:
        trigger = row["trigger_at"]
        return PendingConfirmation(
            token=row["token"],
            owner_id=row["owner_id"],
            task=row["task"],
            trigger_at=from_timestamp(trigger) if trigger is not None else None,
            recurrence_rule=row["recurrence_rule"],
            all_day=bool(row["all_day"]),
            source=row["source"],
            expires_at=from_timestamp(row["expires_at"]),
        )

    def save(self, pending: PendingConfirmation) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO pending_confirmations
                    (token, owner_id, task, trigger_at, recurrence_rule,
                     all_day, source, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    pending.token, pending.owner_id, pending.task,
                    to_timestamp(pending.trigger_at) if pending.trigger_at else None,
                    pending.recurrence_rule, int(pending.all_day), pending.source,
                    to_timestamp(pending.expires_at),
                ),
            )

    def get(self, token: str) -> PendingConfirmation | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM pending_confirmations WHERE token = ?", (token,)
            ).fetchone()
        return self._row_to_pending(row) if row else None

    def delete(self, token: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM pending_confirmations WHERE token = ?", (token,)
            )
        return cursor.rowcount > 0

    def purge_expired(self, now: datetime) -> int:
        """Drop drafts whose TTL has passed. Returns the number removed."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM pending_confirmations WHERE expires_at <= ?",
                (to_timestamp(now),),
            )
        if cursor.rowcount:
            logger.info("Purged %d expired confirmation(s)", cursor.rowcount)
        return cursor.rowcount
