"""
Reminder Bot — UI-Agnostic Action Service.

Stateless service layer that orchestrates the business logic:
extract text -> resolve time and rule -> persist a pending draft -> on
confirmation insert the reminder. Also serves list, history and delete.

Each UI adapter calls this service and renders the response objects in its
own way. No state lives in the process between calls: drafts are rows in
the pending confirmations table, keyed by a token the UI carries back.
"""

from __future__ import annotations

import logging
import secrets
from html import escape
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import TYPE_CHECKING

from src.core.formatting import (
    format_confirmation,
    format_history,
    format_reminder_list,
    format_saved,
)
from src.core.parser import (
    DEFAULT_CHAIN,
    QueryRange,
    default_list_range,
    extract,
    resolve_query_range,
)
from src.core.recurrence import (
    InvalidRule,
    NoRecurrence,
    first_occurrence,
    occurs_between,
    parse_rule,
    to_descriptor,
)
from src.core.time_resolver import (
    PLACEHOLDER_TASK,
    Unresolved,
    civil_midnight,
    resolve_absolute,
    to_civil,
)
from src.data.models import PendingConfirmation, Reminder
from src.ports.store_port import StoreError

if TYPE_CHECKING:
    from src.data.db import PendingConfirmationDB, ReminderDB

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 15
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------


class ResponseKind(Enum):
    SUCCESS = "success"
    ERROR = "error"
    CONFIRMATION_PROMPT = "confirmation_prompt"
    LIST_RESULT = "list_result"
    HISTORY_RESULT = "history_result"
    NO_ACTION = "no_action"


@dataclass
class ServiceResponse:
    kind: ResponseKind
    message: str


@dataclass
class SuccessResponse(ServiceResponse):
    reminder: Reminder | None = None


@dataclass
class ErrorResponse(ServiceResponse):
    field: str = ""   # "time" | "recurrence" | "" when not tied to a field


@dataclass
class NoActionResponse(ServiceResponse):
    pass


@dataclass
class ConfirmationPromptResponse(ServiceResponse):
    token: str = ""
    pending: PendingConfirmation | None = None


@dataclass
class ListResponse(ServiceResponse):
    label: str = ""
    reminders: list[Reminder] = field(default_factory=list)


# ---------------------------------------------------------------------------
# ActionService
# ---------------------------------------------------------------------------


def _error(message: str, field_name: str = "") -> ErrorResponse:
    return ErrorResponse(kind=ResponseKind.ERROR, message=message, field=field_name)


class ActionService:
    """Stateless service that orchestrates all reminder business logic.

    Returns structured response objects — never sends messages directly.
    """

    def __init__(
        self,
        store: ReminderDB,
        pending_db: PendingConfirmationDB,
        tz: tzinfo | None = None,
        pending_ttl: timedelta = timedelta(minutes=30),
        chain: list[str] | tuple[str, ...] = DEFAULT_CHAIN,
        hint_keywords: list[str] | tuple[str, ...] = (),
    ) -> None:
        self._store = store
        self._pending = pending_db
        self._tz = tz
        self._pending_ttl = pending_ttl
        self._chain = tuple(chain)
        self._hint_keywords = tuple(hint_keywords)

    # ------------------------------------------------------------------
    # Public: process free-text
    # ------------------------------------------------------------------

    async def process_text(self, text: str, owner_id: str, now: datetime) -> ServiceResponse:
        """Extract a reminder draft from free text and ask for confirmation.

        Returns:
            ConfirmationPromptResponse with a persisted pending token,
            ErrorResponse naming the field that could not be resolved, or
            NoActionResponse when no strategy understood the message.
        """
        draft = await extract(text, now, self._chain, self._hint_keywords, self._tz)
        if draft is None:
            return NoActionResponse(
                kind=ResponseKind.NO_ACTION,
                message=(
                    "I couldn't understand that as a reminder. Try something like: "
                    "'Call mom tomorrow 21:00' or 'Gym every Mon, Wed, Fri at 7am'."
                ),
            )

        rule = parse_rule(draft.rule)
        if isinstance(rule, InvalidRule):
            logger.warning("Rejected recurrence '%s': %s", rule.descriptor, rule.reason)
            return _error(
                f"⚠️ Invalid recurrence rule '{escape(rule.descriptor)}': {escape(rule.reason)}.",
                "recurrence",
            )

        trigger: datetime | None = None
        if draft.time:
            resolved = resolve_absolute(draft.time, now, self._tz)
            if isinstance(resolved, Unresolved):
                logger.info("Unresolved time '%s': %s", resolved.expression, resolved.reason)
                return _error(
                    f"⚠️ Could not determine a time from '{escape(resolved.expression)}'.",
                    "time",
                )
            trigger = resolved

        all_day = draft.is_all_day
        if trigger is not None and all_day:
            trigger = civil_midnight(to_civil(trigger, self._tz).date(), self._tz)

        if not isinstance(rule, NoRecurrence):
            if trigger is None:
                # Recurring without a time: all-day, starting from today's civil midnight
                trigger = civil_midnight(to_civil(now, self._tz).date(), self._tz)
                all_day = True
            trigger = first_occurrence(rule, trigger, now, self._tz)
        elif trigger is not None and trigger <= now and not all_day:
            return _error(
                f"⚠️ The time '{escape(draft.time)}' is already in the past.",
                "time",
            )

        pending = PendingConfirmation(
            token=secrets.token_urlsafe(9),
            owner_id=owner_id,
            task=draft.task.strip() or PLACEHOLDER_TASK,
            trigger_at=trigger,
            recurrence_rule=to_descriptor(rule),
            all_day=all_day,
            source="local" if draft.source == "local" else "AI",
            expires_at=now + self._pending_ttl,
        )
        try:
            self._pending.purge_expired(now)
            self._pending.save(pending)
        except StoreError as exc:
            logger.error("Saving pending confirmation failed: %s", exc)
            return _error("⚠️ Could not save the draft. Please try again.")

        logger.info("Draft %s for %s: '%s'", pending.token, owner_id, pending.task)
        return ConfirmationPromptResponse(
            kind=ResponseKind.CONFIRMATION_PROMPT,
            message=format_confirmation(pending, self._tz),
            token=pending.token,
            pending=pending,
        )

    # ------------------------------------------------------------------
    # Public: confirmation callbacks
    # ------------------------------------------------------------------

    def confirm(self, token: str, owner_id: str, now: datetime) -> ServiceResponse:
        """Turn a pending draft into a stored reminder."""
        try:
            pending = self._pending.get(token)
            if pending is None or pending.owner_id != owner_id:
                return _error("This confirmation is no longer available.")
            if pending.is_expired(now):
                self._pending.delete(token)
                return _error("This confirmation has expired. Please send the reminder again.")

            # Consume the draft before inserting so a repeated Save cannot insert twice
            if not self._pending.delete(token):
                return _error("This confirmation is no longer available.")
            reminder = self._store.add_reminder(
                owner_id=owner_id,
                task=pending.task,
                trigger_at=pending.trigger_at,
                recurrence_rule=pending.recurrence_rule,
                all_day=pending.all_day,
            )
        except StoreError as exc:
            logger.error("Confirming %s failed: %s", token, exc)
            return _error(f"❌ Database error: {escape(str(exc))}")

        return SuccessResponse(
            kind=ResponseKind.SUCCESS,
            message=format_saved(reminder, self._tz),
            reminder=reminder,
        )

    def cancel(self, token: str, owner_id: str) -> ServiceResponse:
        try:
            pending = self._pending.get(token)
            if pending is not None and pending.owner_id == owner_id:
                self._pending.delete(token)
        except StoreError as exc:
            logger.error("Cancelling %s failed: %s", token, exc)
            return _error(f"❌ Database error: {escape(str(exc))}")
        return SuccessResponse(kind=ResponseKind.SUCCESS, message="Cancelled.")

    # ------------------------------------------------------------------
    # Public: queries
    # ------------------------------------------------------------------

    async def _range(self, query: str, now: datetime) -> QueryRange | None:
        if not query.strip():
            return default_list_range(now, self._tz)
        return await resolve_query_range(query, now, self._tz)

    def _in_range(self, reminder: Reminder, window: QueryRange) -> bool:
        if reminder.trigger_at is None:
            return True
        if window.start <= reminder.trigger_at <= window.end:
            return True
        if reminder.is_recurring:
            rule = parse_rule(reminder.recurrence_rule)
            if not isinstance(rule, InvalidRule):
                return occurs_between(rule, window.start, window.end, self._tz)
        return False

    async def list_reminders(self, owner_id: str, query: str, now: datetime) -> ServiceResponse:
        """Active reminders that are untimed, due in the window, or recur in it."""
        window = await self._range(query, now)
        if window is None:
            return _error(f"⚠️ Could not understand the range '{escape(query)}'.", "time")

        try:
            reminders = [r for r in self._store.list_active(owner_id) if self._in_range(r, window)]
        except StoreError as exc:
            logger.error("Listing reminders for %s failed: %s", owner_id, exc)
            return _error(f"❌ Database error: {escape(str(exc))}")

        return ListResponse(
            kind=ResponseKind.LIST_RESULT,
            message=format_reminder_list(window.label, reminders, self._tz),
            label=window.label,
            reminders=reminders,
        )

    async def list_history(self, owner_id: str, query: str, now: datetime) -> ServiceResponse:
        """Done records, newest first, at most HISTORY_LIMIT."""
        if query.strip():
            window = await resolve_query_range(query, now, self._tz)
            if window is None:
                return _error(f"⚠️ Could not understand the range '{escape(query)}'.", "time")
        else:
            window = QueryRange(start=_EPOCH, end=now, label="Recent")

        try:
            records = self._store.list_history(owner_id, window.start, window.end, HISTORY_LIMIT)
        except StoreError as exc:
            logger.error("Listing history for %s failed: %s", owner_id, exc)
            return _error(f"❌ Database error: {escape(str(exc))}")

        return ListResponse(
            kind=ResponseKind.HISTORY_RESULT,
            message=format_history(window.label, records, self._tz),
            label=window.label,
            reminders=records,
        )

    def active_reminders(self, owner_id: str) -> list[Reminder]:
        """Everything an owner can still delete, for manage mode."""
        return self._store.list_active(owner_id)

    # ------------------------------------------------------------------
    # Public: delete
    # ------------------------------------------------------------------

    def delete_reminders(self, owner_id: str, ids: Iterable[int]) -> ServiceResponse:
        id_list = list(ids)
        if not id_list:
            return _error("No reminders selected.")
        try:
            deleted = self._store.delete_reminders(owner_id, id_list)
        except StoreError as exc:
            logger.error("Deleting reminders for %s failed: %s", owner_id, exc)
            return _error(f"❌ Database error: {escape(str(exc))}")
        return SuccessResponse(
            kind=ResponseKind.SUCCESS,
            message=f"🗑️ Deleted {deleted} reminder(s).",
        )
