"""
Reminder Bot — Message Formatting.

Builds the HTML text the bot sends. Pure string functions; the bot and the
sweep decide where the text goes.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, tzinfo
from html import escape
from typing import TYPE_CHECKING

from src.core.recurrence import describe_rule, parse_rule
from src.core.time_resolver import format_instant
from src.data.models import PendingConfirmation, Reminder

if TYPE_CHECKING:
    from src.core.lifecycle import NotificationRequest


def rule_label(descriptor: str | None) -> str:
    """Human label for a stored descriptor ('weekly:1,3,5' -> 'Every Mon, Wed, Fri')."""
    return describe_rule(parse_rule(descriptor))


def _when(trigger_at: datetime | None, all_day: bool, tz: tzinfo | None, short: bool = False) -> str:
    return format_instant(trigger_at, tz, all_day=all_day, short=short)


def format_confirmation(pending: PendingConfirmation, tz: tzinfo | None = None) -> str:
    """The Save / Cancel prompt for a resolved draft."""
    return (
        "📌 <b>Confirm reminder</b>\n"
        f"📝 Task: {escape(pending.task)}\n"
        f"⏰ Time: {_when(pending.trigger_at, pending.all_day, tz)}\n"
        f"🔄 Repeat: {rule_label(pending.recurrence_rule)}\n"
        f"🔍 Source: {escape(pending.source)}"
    )


def format_saved(reminder: Reminder, tz: tzinfo | None = None) -> str:
    return (
        f"✅ Saved: <b>{escape(reminder.task)}</b>\n"
        f"⏰ {_when(reminder.trigger_at, reminder.all_day, tz)}"
        f" · {rule_label(reminder.recurrence_rule)}"
    )


def format_notification(request: NotificationRequest, tz: tzinfo | None = None) -> str:
    text = (
        f"🔔 <b>Reminder!</b>\n👉 {escape(request.task)}\n"
        f"⏰ {_when(request.fired_at, request.all_day, tz)}"
    )
    if request.recurrence_rule not in ("", "none"):
        text += f"\n🔄 {rule_label(request.recurrence_rule)}"
    return text


def _list_line(index: int, reminder: Reminder, tz: tzinfo | None) -> str:
    if reminder.trigger_at is None:
        when = "No time limit"
    else:
        when = _when(reminder.trigger_at, reminder.all_day, tz, short=True)
    if reminder.is_recurring:
        when += f" ({rule_label(reminder.recurrence_rule)})"
    return f"{index}. [{when}] {escape(reminder.task)}"


def format_reminder_list(label: str, reminders: Sequence[Reminder], tz: tzinfo | None = None) -> str:
    if not reminders:
        return f"📭 No reminders for {escape(label)}."
    lines = [f"📋 <b>{escape(label)}: reminders</b>"]
    lines += [_list_line(i, r, tz) for i, r in enumerate(reminders, start=1)]
    return "\n".join(lines)


def format_history(label: str, records: Sequence[Reminder], tz: tzinfo | None = None) -> str:
    if not records:
        return f"📚 No completed reminders for {escape(label)}."
    lines = [f"📚 <b>{escape(label)}: completed</b>"]
    for i, record in enumerate(records, start=1):
        when = _when(record.trigger_at, record.all_day, tz, short=True)
        lines.append(f"{i}. [{when}] ✅ {escape(record.task)}")
    return "\n".join(lines)


def format_digest(reminders: Sequence[Reminder]) -> str:
    """Twice-daily nudge listing reminders that have no time set."""
    lines = [f"🗒 <b>Open reminders without a time</b> ({len(reminders)})"]
    lines += [f"• {escape(r.task)}" for r in reminders]
    return "\n".join(lines)
