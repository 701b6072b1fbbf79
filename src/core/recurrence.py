"""
Reminder Bot — Recurrence Engine.

Recurrence descriptors ("daily", "weekly:1,3,5", "monthly:31", "yearly:02-29")
are validated once, at the boundary, into a closed set of rule types. Next
occurrences are always stepped from the last fired instant, never from "now",
so a late sweep cannot shift a rule's cadence.

Weekdays use ISO numbering: Monday=1 .. Sunday=7.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo

from dateutil.relativedelta import relativedelta

from src.core.time_resolver import civil_to_instant, to_civil

_WEEKDAY_LABELS = {1: "Mon", 2: "Tue", 3: "Wed", 4: "Thu", 5: "Fri", 6: "Sat", 7: "Sun"}
_NONE_ALIASES = {"", "none", "null", "n"}

# Upper bound on stepping in first_occurrence (ten years of daily steps)
_MAX_ALIGN_STEPS = 3660


@dataclass(frozen=True)
class NoRecurrence:
    """One-shot reminder."""


@dataclass(frozen=True)
class Daily:
    pass


@dataclass(frozen=True)
class Weekly:
    days: frozenset[int]


@dataclass(frozen=True)
class Monthly:
    day: int


@dataclass(frozen=True)
class Yearly:
    month: int
    day: int


Rule = NoRecurrence | Daily | Weekly | Monthly | Yearly


@dataclass(frozen=True)
class InvalidRule:
    """Failure value: the descriptor was rejected."""

    descriptor: str
    reason: str


# ---------------------------------------------------------------------------
# Parsing / serialization
# ---------------------------------------------------------------------------


def _parse_int(raw: str) -> int | None:
    raw = raw.strip()
    if not raw.isdigit():
        return None
    return int(raw)


def parse_rule(descriptor: str | None) -> Rule | InvalidRule:
    """Validate a recurrence descriptor into a Rule.

    Returns InvalidRule (never raises) for malformed input: unknown kinds,
    out-of-range numbers, empty weekday sets, impossible yearly dates.
    """
    raw = (descriptor or "").strip()
    lowered = raw.lower()
    if lowered in _NONE_ALIASES:
        return NoRecurrence()
    if lowered == "daily":
        return Daily()

    kind, sep, arg = lowered.partition(":")
    if not sep:
        return InvalidRule(raw, f"unknown recurrence kind '{kind}'")

    if kind == "weekly":
        parts = [p for p in arg.split(",") if p.strip()]
        if not parts:
            return InvalidRule(raw, "weekly rule needs at least one weekday")
        days = set()
        for part in parts:
            value = _parse_int(part)
            if value is None or not 1 <= value <= 7:
                return InvalidRule(raw, f"weekday '{part.strip()}' is not in 1-7")
            days.add(value)
        return Weekly(frozenset(days))

    if kind == "monthly":
        value = _parse_int(arg)
        if value is None or not 1 <= value <= 31:
            return InvalidRule(raw, f"day of month '{arg}' is not in 1-31")
        return Monthly(value)

    if kind == "yearly":
        month_raw, dash, day_raw = arg.partition("-")
        month, day = _parse_int(month_raw), _parse_int(day_raw)
        if not dash or month is None or day is None:
            return InvalidRule(raw, f"yearly rule '{arg}' is not MM-DD")
        if not 1 <= month <= 12:
            return InvalidRule(raw, f"month '{month}' is not in 1-12")
        # 2000 is a leap year, so Feb 29 is allowed here
        if not 1 <= day <= calendar.monthrange(2000, month)[1]:
            return InvalidRule(raw, f"day '{day}' does not exist in month {month}")
        return Yearly(month, day)

    return InvalidRule(raw, f"unknown recurrence kind '{kind}'")


def to_descriptor(rule: Rule) -> str:
    """Canonical descriptor string for a rule."""
    if isinstance(rule, NoRecurrence):
        return "none"
    if isinstance(rule, Daily):
        return "daily"
    if isinstance(rule, Weekly):
        return "weekly:" + ",".join(str(d) for d in sorted(rule.days))
    if isinstance(rule, Monthly):
        return f"monthly:{rule.day}"
    if isinstance(rule, Yearly):
        return f"yearly:{rule.month:02d}-{rule.day:02d}"
    raise ValueError(f"Not a recurrence rule: {rule!r}")


def describe_rule(rule: Rule | InvalidRule) -> str:
    """Short human label, e.g. 'Weekdays' or 'Every Mon, Wed'."""
    if isinstance(rule, NoRecurrence):
        return "One-time"
    if isinstance(rule, Daily):
        return "Every day"
    if isinstance(rule, Weekly):
        if rule.days == frozenset({1, 2, 3, 4, 5}):
            return "Weekdays"
        if rule.days == frozenset({6, 7}):
            return "Weekends"
        if len(rule.days) == 7:
            return "Every day"
        return "Every " + ", ".join(_WEEKDAY_LABELS[d] for d in sorted(rule.days))
    if isinstance(rule, Monthly):
        return f"Monthly on day {rule.day}"
    if isinstance(rule, Yearly):
        return f"Yearly on {calendar.month_abbr[rule.month]} {rule.day}"
    return f"Invalid rule ({rule.descriptor})"


# ---------------------------------------------------------------------------
# Matching / stepping
# ---------------------------------------------------------------------------


def matches(rule: Rule, civil_date: date) -> bool:
    """True iff the rule fires on this civil date (time of day ignored).

    Monthly/yearly rules never clamp here: monthly:31 does not match Feb 28.
    """
    if isinstance(rule, Daily):
        return True
    if isinstance(rule, Weekly):
        return civil_date.isoweekday() in rule.days
    if isinstance(rule, Monthly):
        return civil_date.day == rule.day
    if isinstance(rule, Yearly):
        return civil_date.month == rule.month and civil_date.day == rule.day
    return False


def _clamped(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def _next_date(rule: Rule, current: date) -> date:
    if isinstance(rule, Daily):
        return current + timedelta(days=1)

    if isinstance(rule, Weekly):
        for step in range(1, 8):
            candidate = current + timedelta(days=step)
            if matches(rule, candidate):
                return candidate
        raise ValueError(f"Weekly rule has no weekdays: {rule!r}")

    if isinstance(rule, Monthly):
        candidate = _clamped(current.year, current.month, rule.day)
        if candidate > current:
            return candidate
        following = current.replace(day=1) + relativedelta(months=1)
        return _clamped(following.year, following.month, rule.day)

    if isinstance(rule, Yearly):
        candidate = _clamped(current.year, rule.month, rule.day)
        if candidate > current:
            return candidate
        return _clamped(current.year + 1, rule.month, rule.day)

    raise ValueError(f"next_occurrence needs a recurring rule, got {rule!r}")


def next_occurrence(rule: Rule, last_fired: datetime, tz: tzinfo | None = None) -> datetime:
    """Next instant strictly after `last_fired` on which the rule fires.

    The civil time of day of `last_fired` is preserved. Monthly rules clamp to
    the last day of short months; yearly Feb 29 clamps to Feb 28.

    Raises:
        ValueError: for NoRecurrence or InvalidRule (callers must gate
            creation with parse_rule).
    """
    if not isinstance(rule, (Daily, Weekly, Monthly, Yearly)):
        raise ValueError(f"next_occurrence needs a recurring rule, got {rule!r}")
    local = to_civil(last_fired, tz)
    target = _next_date(rule, local.date())
    return civil_to_instant(datetime.combine(target, local.time()), tz)


def first_occurrence(
    rule: Rule,
    start: datetime,
    reference: datetime,
    tz: tzinfo | None = None,
) -> datetime:
    """Align a freshly resolved trigger to the rule.

    Returns `start` when it already falls on a matching date after
    `reference`; otherwise steps forward until the first match that is
    strictly after `reference`.
    """
    if isinstance(rule, NoRecurrence):
        return start
    if start > reference and matches(rule, to_civil(start, tz).date()):
        return start

    occurrence = next_occurrence(rule, start, tz)
    for _ in range(_MAX_ALIGN_STEPS):
        if occurrence > reference:
            return occurrence
        occurrence = next_occurrence(rule, occurrence, tz)
    raise ValueError(f"Could not align {start.isoformat()} to {to_descriptor(rule)}")


def occurs_between(
    rule: Rule,
    start: datetime,
    end: datetime,
    tz: tzinfo | None = None,
) -> bool:
    """Does the rule fire on any civil date in [start, end]?"""
    if isinstance(rule, NoRecurrence) or end < start:
        return False
    first_day = to_civil(start, tz).date()
    last_day = to_civil(end, tz).date()
    # A year covers every monthly and yearly pattern
    last_day = min(last_day, first_day + timedelta(days=366))
    day = first_day
    while day <= last_day:
        if matches(rule, day):
            return True
        day += timedelta(days=1)
    return False
