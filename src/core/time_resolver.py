"""
Reminder Bot — Time Resolver.

Turns a time/date expression plus a reference instant into an absolute
instant. Human text is always read in one fixed civil timezone (UTC+8 unless
configured otherwise); everything returned from here is an aware UTC datetime.

Pure functions: expected bad input yields an `Unresolved` value, never an
exception, so callers have to branch on it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo

import dateparser
from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

DEFAULT_UTC_OFFSET_MINUTES = 480
PLACEHOLDER_TASK = "Untitled task"


@dataclass(frozen=True)
class Unresolved:
    """Failure value: no instant could be derived from the expression."""

    expression: str
    reason: str = "no recognizable date or time"


# ---------------------------------------------------------------------------
# Civil-time helpers
# ---------------------------------------------------------------------------


def civil_tz(offset_minutes: int = DEFAULT_UTC_OFFSET_MINUTES) -> timezone:
    """Fixed-offset civil timezone (no DST)."""
    return timezone(timedelta(minutes=offset_minutes))


_DEFAULT_TZ = civil_tz()


def _tz(tz: tzinfo | None) -> tzinfo:
    return tz if tz is not None else _DEFAULT_TZ


def to_civil(instant: datetime, tz: tzinfo | None = None) -> datetime:
    """Render an absolute instant as civil wall-clock time (aware)."""
    if instant.tzinfo is None:
        raise ValueError("instant must be timezone-aware")
    return instant.astimezone(_tz(tz))


def civil_to_instant(wall: datetime, tz: tzinfo | None = None) -> datetime:
    """Read a wall-clock datetime as civil time and return it in UTC.

    Naive input is civil time, never UTC. Aware input keeps its own offset.
    """
    if wall.tzinfo is None:
        wall = wall.replace(tzinfo=_tz(tz))
    return wall.astimezone(timezone.utc)


def civil_midnight(day: date, tz: tzinfo | None = None) -> datetime:
    return civil_to_instant(datetime.combine(day, time()), tz)


def to_timestamp(instant: datetime) -> int:
    return int(instant.timestamp())


def from_timestamp(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def format_instant(
    instant: datetime | None,
    tz: tzinfo | None = None,
    all_day: bool = False,
    short: bool = False,
) -> str:
    """Human-readable civil rendering. `short` drops the year."""
    if instant is None:
        return "No time limit"
    local = to_civil(instant, tz)
    day_fmt = "%m-%d" if short else "%Y-%m-%d"
    if all_day:
        return f"{local.strftime(day_fmt)} (all day)"
    return local.strftime(f"{day_fmt} %H:%M")


# ---------------------------------------------------------------------------
# Expression grammar
# ---------------------------------------------------------------------------

_ISO_DATETIME = re.compile(
    r"^(\d{4})-(\d{1,2})-(\d{1,2})[T ](\d{1,2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?"
    r"\s*(Z|[+-]\d{2}:?\d{2})?$",
    re.IGNORECASE,
)
_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_CLOCK = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_CLOCK_12H = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)$", re.IGNORECASE)
_MONTH_DAY = re.compile(r"^(\d{1,2})[-/](\d{1,2})$")
_MONTH_DAY_CJK = re.compile(r"^(\d{1,2})月(\d{1,2})[日號号]?$")

# Clock time embedded in a longer phrase ("tomorrow 09:00", "明天 下午3點")
_CLOCK_IN_TEXT = re.compile(
    r"(?<!\d)(\d{1,2}):(\d{2})(?::(\d{2}))?(?:\s*(am|pm)\b)?", re.IGNORECASE,
)
_CLOCK_12H_IN_TEXT = re.compile(r"\b(\d{1,2})\s*(am|pm)\b", re.IGNORECASE)
_CLOCK_CJK_IN_TEXT = re.compile(
    r"(早上|上午|中午|下午|晚上)?\s*(\d{1,2})\s*[點点](?:\s*(\d{1,2})\s*分|(半))?",
)

# (pattern, days from the reference civil date), most specific first
_RELATIVE_DAYS: list[tuple[re.Pattern, int]] = [
    (re.compile(r"\bday\s+after\s+tomorrow\b", re.IGNORECASE), 2),
    (re.compile(r"後天|后天"), 2),
    (re.compile(r"\btomorrow\b|\btmr\b", re.IGNORECASE), 1),
    (re.compile(r"明天|明日|明早|明晚"), 1),
    (re.compile(r"\btoday\b|\btonight\b", re.IGNORECASE), 0),
    (re.compile(r"今天|今日|今晚|今早"), 0),
]
_RELATIVE_OFFSET = re.compile(
    r"\bin\s+(\d+)\s+(day|week|month|year)s?\b", re.IGNORECASE,
)
_RELATIVE_OFFSET_CJK = re.compile(r"(\d+)\s*(天|週|周|個月|个月|年)[後后]")

_UNIT_ALIASES = {
    "day": "days", "天": "days",
    "week": "weeks", "週": "weeks", "周": "weeks",
    "month": "months", "個月": "months", "个月": "months",
    "year": "years", "年": "years",
}


def _build_clock(hour: int, minute: int, second: int = 0) -> time | None:
    if 0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59:
        return time(hour, minute, second)
    return None


def _apply_meridiem(hour: int, meridiem: str | None) -> int:
    if not meridiem:
        return hour
    meridiem = meridiem.lower()
    if meridiem in ("pm", "下午", "晚上") and hour < 12:
        return hour + 12
    # 中午 spans roughly 11:00-13:00; only the afternoon hours shift
    if meridiem == "中午" and 1 <= hour <= 5:
        return hour + 12
    if meridiem == "am" and hour == 12:
        return 0
    return hour


def _locate_clock(text: str) -> tuple[time | None, int]:
    """Find a clock time in `text` and how many civil days it lies past the named date.

    The day shift is 1 only for 晚上12點 (midnight at the end of that evening).
    """
    m = _CLOCK_IN_TEXT.search(text)
    if m:
        hour = _apply_meridiem(int(m.group(1)), m.group(4))
        return _build_clock(hour, int(m.group(2)), int(m.group(3) or 0)), 0
    m = _CLOCK_12H_IN_TEXT.search(text)
    if m:
        return _build_clock(_apply_meridiem(int(m.group(1)), m.group(2)), 0), 0
    m = _CLOCK_CJK_IN_TEXT.search(text)
    if m:
        minute = 30 if m.group(4) else int(m.group(3) or 0)
        if m.group(1) == "晚上" and int(m.group(2)) == 12:
            return _build_clock(0, minute), 1
        hour = _apply_meridiem(int(m.group(2)), m.group(1))
        return _build_clock(hour, minute), 0
    return None, 0


def _find_clock(text: str) -> time | None:
    """Find a clock time anywhere in `text`."""
    return _locate_clock(text)[0]


def _parse_offset(raw: str) -> timezone:
    if raw.upper() == "Z":
        return timezone.utc
    sign = -1 if raw[0] == "-" else 1
    digits = raw[1:].replace(":", "")
    minutes = int(digits[:2]) * 60 + int(digits[2:])
    return timezone(sign * timedelta(minutes=minutes))


def _next_valid_date(year: int, month: int, day: int) -> date | None:
    """date(year, month, day), moving Feb 29 forward to the next leap year."""
    try:
        return date(year, month, day)
    except ValueError:
        if (month, day) != (2, 29):
            return None
    for candidate_year in range(year + 1, year + 9):
        try:
            return date(candidate_year, 2, 29)
        except ValueError:
            continue
    return None


# ---------------------------------------------------------------------------
# Resolution cases
# ---------------------------------------------------------------------------


def _resolve_iso(expr: str, tz: tzinfo) -> datetime | Unresolved | None:
    m = _ISO_DATETIME.match(expr)
    if m:
        year, month, day, hour, minute = (int(g) for g in m.groups()[:5])
        second = int(m.group(6) or 0)
        try:
            wall = datetime(year, month, day, hour, minute, second)
        except ValueError:
            return Unresolved(expr, "invalid calendar date or time")
        if m.group(7):
            return wall.replace(tzinfo=_parse_offset(m.group(7))).astimezone(timezone.utc)
        return civil_to_instant(wall, tz)

    m = _ISO_DATE.match(expr)
    if m:
        try:
            day = date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        except ValueError:
            return Unresolved(expr, "invalid calendar date")
        return civil_midnight(day, tz)
    return None


def _resolve_clock(expr: str, reference: datetime, tz: tzinfo) -> datetime | Unresolved | None:
    m = _CLOCK.match(expr)
    if m:
        clock = _build_clock(int(m.group(1)), int(m.group(2)), int(m.group(3) or 0))
    else:
        m = _CLOCK_12H.match(expr)
        if not m:
            return None
        hour = _apply_meridiem(int(m.group(1)), m.group(3))
        clock = _build_clock(hour, int(m.group(2) or 0))
    if clock is None:
        return Unresolved(expr, "clock time out of range")

    local_ref = to_civil(reference, tz)
    candidate = civil_to_instant(datetime.combine(local_ref.date(), clock), tz)
    if candidate <= reference:
        candidate = civil_to_instant(
            datetime.combine(local_ref.date() + timedelta(days=1), clock), tz,
        )
    return candidate


def _resolve_month_day(expr: str, reference: datetime, tz: tzinfo) -> datetime | Unresolved | None:
    m = _MONTH_DAY.match(expr) or _MONTH_DAY_CJK.match(expr)
    if not m:
        return None
    month, day = int(m.group(1)), int(m.group(2))
    year = to_civil(reference, tz).year

    target = _next_valid_date(year, month, day)
    if target is None:
        return Unresolved(expr, "invalid calendar date")
    candidate = civil_midnight(target, tz)
    if candidate <= reference:
        target = _next_valid_date(target.year + 1, month, day)
        candidate = civil_midnight(target, tz)
    return candidate


def _resolve_relative(expr: str, reference: datetime, tz: tzinfo) -> datetime | None:
    delta: relativedelta | None = None

    m = _RELATIVE_OFFSET.search(expr) or _RELATIVE_OFFSET_CJK.search(expr)
    if m:
        unit = _UNIT_ALIASES[m.group(2).lower()]
        delta = relativedelta(**{unit: int(m.group(1))})
    else:
        for pattern, days in _RELATIVE_DAYS:
            if pattern.search(expr):
                delta = relativedelta(days=days)
                break
    if delta is None:
        return None

    clock, extra_days = _locate_clock(expr)
    target_day = to_civil(reference, tz).date() + delta + timedelta(days=extra_days)
    return civil_to_instant(datetime.combine(target_day, clock or time()), tz)


def _resolve_natural(expr: str, reference: datetime, tz: tzinfo) -> datetime | Unresolved:
    local_ref = to_civil(reference, tz).replace(tzinfo=None)
    try:
        parsed = dateparser.parse(
            expr,
            settings={
                "RELATIVE_BASE": local_ref,
                "PREFER_DATES_FROM": "future",
                "RETURN_AS_TIMEZONE_AWARE": False,
            },
        )
    except (ValueError, OverflowError) as exc:
        logger.warning("dateparser failed on '%s': %s", expr, exc)
        return Unresolved(expr)
    if parsed is None:
        return Unresolved(expr)
    return civil_to_instant(parsed, tz)


def resolve_absolute(
    expression: str | None,
    reference: datetime,
    tz: tzinfo | None = None,
) -> datetime | Unresolved:
    """Resolve a time expression to an absolute UTC instant.

    Args:
        expression: ISO date-time (with or without offset), ISO date, bare
            clock time, bare month-day, relative phrase, or free text.
        reference: The "now" the expression is relative to (aware).
        tz: Civil timezone; defaults to UTC+8.

    Returns:
        An aware UTC datetime, or `Unresolved` if nothing could be derived.
    """
    if reference.tzinfo is None:
        raise ValueError("reference must be timezone-aware")
    tz = _tz(tz)
    expr = (expression or "").strip()
    if not expr:
        return Unresolved("", "empty expression")

    for resolver in (
        lambda: _resolve_iso(expr, tz),
        lambda: _resolve_clock(expr, reference, tz),
        lambda: _resolve_month_day(expr, reference, tz),
        lambda: _resolve_relative(expr, reference, tz),
    ):
        result = resolver()
        if result is not None:
            return result

    return _resolve_natural(expr, reference, tz)


# ---------------------------------------------------------------------------
# Task label cleanup
# ---------------------------------------------------------------------------

_TRIGGER_WORDS = re.compile(
    r"\bremind\s+me(\s+to)?\b|\bdon'?t\s+forget(\s+to)?\b|\bplease\b|\bpls\b"
    r"|提醒我|記得|记得|幫我|帮我|麻煩|麻烦|請|请|一下",
    re.IGNORECASE,
)
_RECURRENCE_WORDS = re.compile(
    r"\bevery\s+(day|week|month|year|morning|night|weekday|weekend"
    r"|monday|tuesday|wednesday|thursday|friday|saturday|sunday)s?\b"
    r"|\b(daily|weekly|monthly|yearly|annually)\b"
    r"|每天|每日|每晚|每早|每[週周][一二三四五六日天]?|每月|每年",
    re.IGNORECASE,
)
_TIME_WORDS = [
    _RELATIVE_OFFSET,
    _RELATIVE_OFFSET_CJK,
    *(pattern for pattern, _ in _RELATIVE_DAYS),
    re.compile(r"\b\d{4}-\d{1,2}-\d{1,2}(?:[T ]\d{1,2}:\d{2}(?::\d{2})?)?\b"),
    re.compile(r"\d{1,2}月\d{1,2}[日號号]?"),
    _CLOCK_IN_TEXT,
    _CLOCK_12H_IN_TEXT,
    _CLOCK_CJK_IN_TEXT,
    re.compile(r"\b(morning|afternoon|evening|noon|midnight)\b", re.IGNORECASE),
    re.compile(r"早上|上午|中午|下午|晚上"),
]
_DANGLING = re.compile(r"^to\b\s*|\s*(?:\b(?:at|on|by)|@)$", re.IGNORECASE)
_EDGE_PUNCTUATION = " \t,.;:!?，。；：！？、~-"


def strip_time_language(text: str, matched: str | None = None) -> str:
    """Remove trigger and time phrases from `text` to leave a task label.

    Args:
        text: Raw user message.
        matched: Optional phrase a date parser already recognized; removed
            verbatim before the generic patterns run.

    Returns:
        The cleaned label, or PLACEHOLDER_TASK if nothing is left.
    """
    cleaned = text or ""
    if matched:
        cleaned = cleaned.replace(matched, " ")
    cleaned = _TRIGGER_WORDS.sub(" ", cleaned)
    cleaned = _RECURRENCE_WORDS.sub(" ", cleaned)
    for pattern in _TIME_WORDS:
        cleaned = pattern.sub(" ", cleaned)

    cleaned = re.sub(r"\s+", " ", cleaned).strip(_EDGE_PUNCTUATION)
    previous = None
    while previous != cleaned:
        previous = cleaned
        cleaned = _DANGLING.sub("", cleaned).strip(_EDGE_PUNCTUATION)

    return cleaned or PLACEHOLDER_TASK


def has_clock_time(text: str) -> bool:
    """True if `text` names a time of day ("09:00", "9pm", "下午3點")."""
    return _find_clock(text or "") is not None
