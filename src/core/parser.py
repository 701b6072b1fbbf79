"""
Reminder Bot — Message Extraction.

Turns a free-text message into {task, time, rule, isAllDay} through an
ordered chain of strategies ("local", "llm"). The local strategy is a
dateparser search; the LLM strategy asks the configured provider for JSON.
Neither resolves anything: `time` stays an expression for the TimeResolver
and `rule` stays a descriptor for the RecurrenceEngine.

Also resolves the optional range argument of /list and /history.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum

from dateparser.search import search_dates
from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.llm import LLMError, complete
from src.core.time_resolver import (
    Unresolved,
    civil_to_instant,
    has_clock_time,
    resolve_absolute,
    strip_time_language,
    to_civil,
)

logger = logging.getLogger(__name__)

DEFAULT_CHAIN = ("local", "llm")

# ---------------------------------------------------------------------------
# Shared JSON contract
# ---------------------------------------------------------------------------


class ExtractionResult(BaseModel):
    """Structured reminder draft extracted from natural language.

    JSON example:
    {
        "task": "Call mom",
        "time": "2025-12-25T21:00:00+08:00",
        "rule": "weekly:1,3,5",
        "isAllDay": false
    }
    """
    model_config = ConfigDict(populate_by_name=True)

    task: str = ""
    time: str | None = None   # expression for resolve_absolute, None = no time limit
    rule: str | None = None   # recurrence descriptor, None = one-shot
    is_all_day: bool = Field(default=False, alias="isAllDay")
    source: str = "llm"


class Confidence(Enum):
    HIGH = "high"
    AMBIGUOUS = "ambiguous"
    NONE = "none"


@dataclass(frozen=True)
class LocalParse:
    task: str
    expression: str | None
    confidence: Confidence


class QueryRange(BaseModel):
    """A civil time window for /list and /history."""
    start: datetime
    end: datetime
    label: str


class _LLMRange(BaseModel):
    start: int
    end: int
    label: str = "Selected range"


# ---------------------------------------------------------------------------
# System prompts for LLM
# ---------------------------------------------------------------------------

_TASK_PROMPT = """\
You are a reminder extraction engine for a chat bot.
Current time (civil, UTC{offset}): {now}

Analyze the user's message and return ONE JSON object:
{{"task": "string", "time": "ISO-8601 string or null", "rule": "string or null", "isAllDay": true/false}}

Rules:
1. "task" = the core activity. Remove time words and phrases like "remind me", "tomorrow", "at 9pm".
2. "time" = "YYYY-MM-DDTHH:MM:SS{offset}" calculated from the current time.
   - A date already past this year means next year.
   - No hour mentioned but a date is given: use "YYYY-MM-DDT00:00:00{offset}" and set isAllDay to true.
   - No time or date at all: null.
3. "rule" (recurrence) defaults to null (one-time).
   - "daily" ONLY if the user explicitly says every day / daily.
   - "weekly:1" = every Monday ... "weekly:7" = every Sunday; "weekly:1,2,3,4,5" = weekdays; "weekly:6,7" = weekends.
   - "monthly:D" = every month on day D.
   - "yearly:MM-DD" = every year on that date.
   - "Tonight at 9pm" is NOT daily.
4. "isAllDay" = true if no specific hour:minute is mentioned, except for daily/weekly rules.

Support both English and Chinese input.
Return ONLY the JSON object. No markdown, no explanation.
"""

_RANGE_PROMPT = """\
You are a time range calculator.
Current time (civil, UTC{offset}): {now}

Return ONE JSON object for the period the user describes:
{{"start": UNIX_TIMESTAMP, "end": UNIX_TIMESTAMP, "label": "short display name"}}

"start" is the first second of the period and "end" the last second, in civil time.
Return ONLY the JSON object. No markdown, no explanation.
"""


# ---------------------------------------------------------------------------
# Response Cleaning Functions
# ---------------------------------------------------------------------------

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def _clean_llm_response(raw_text: str) -> str:
    """Remove markdown code fences and any chatter around the JSON object."""
    cleaned_text = raw_text.strip()
    cleaned_text = cleaned_text.removeprefix("```json").removeprefix("```")
    cleaned_text = cleaned_text.removesuffix("```").strip()
    if not cleaned_text.startswith("{"):
        m = _JSON_OBJECT.search(cleaned_text)
        if m:
            cleaned_text = m.group(0)
    return cleaned_text


def _offset_label(now: datetime, tz: tzinfo | None) -> str:
    raw = to_civil(now, tz).strftime("%z")
    return f"{raw[:3]}:{raw[3:]}"


def _prompt_now(now: datetime, tz: tzinfo | None) -> str:
    return to_civil(now, tz).strftime("%Y-%m-%d %H:%M:%S (%A)")


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


async def extract_with_llm(
    text: str, now: datetime, tz: tzinfo | None = None,
) -> ExtractionResult | None:
    """Ask the configured LLM for a reminder draft.

    Returns None when the provider fails or its output is not a usable
    JSON object; the caller decides what to tell the user.
    """
    offset = _offset_label(now, tz)
    system_prompt = _TASK_PROMPT.format(offset=offset, now=_prompt_now(now, tz))

    raw_text = ""
    try:
        raw_text = await complete(
            system=system_prompt,
            user_message=text,
            max_tokens=256,
        )
        raw_text = _clean_llm_response(raw_text)
        logger.debug("LLM raw response: %s", raw_text)

        data = json.loads(raw_text)
        if not isinstance(data, dict):
            logger.warning("LLM returned unexpected type: %s", type(data).__name__)
            return None

        result = ExtractionResult.model_validate({**data, "source": "llm"})
    except LLMError as exc:
        logger.error("LLM extraction failed: %s", exc)
        return None
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse LLM response as JSON: %s — raw: '%s'", exc, raw_text)
        return None
    except ValidationError as exc:
        logger.error("LLM response did not match the schema: %s", exc)
        return None

    if not result.task.strip():
        result.task = strip_time_language(text)
    logger.info("LLM extracted '%s' time=%s rule=%s", result.task, result.time, result.rule)
    return result


def parse_locally(text: str, now: datetime, tz: tzinfo | None = None) -> LocalParse:
    """Find a single date/time phrase in `text` without calling the LLM.

    HIGH: exactly one phrase that the TimeResolver can resolve.
    AMBIGUOUS: several phrases, or one the resolver rejects.
    NONE: no date/time phrase at all.
    """
    local_now = to_civil(now, tz).replace(tzinfo=None)
    try:
        found = search_dates(
            text,
            settings={
                "RELATIVE_BASE": local_now,
                "PREFER_DATES_FROM": "future",
                "RETURN_AS_TIMEZONE_AWARE": False,
            },
        ) or []
    except (ValueError, OverflowError) as exc:
        logger.warning("Local date search failed on '%s': %s", text, exc)
        found = []

    phrases = [phrase for phrase, _ in found if phrase.strip()]
    if not phrases:
        return LocalParse(strip_time_language(text), None, Confidence.NONE)

    expression = phrases[0].strip()
    task = strip_time_language(text, matched=expression)
    if len(phrases) > 1:
        return LocalParse(task, expression, Confidence.AMBIGUOUS)
    if isinstance(resolve_absolute(expression, now, tz), Unresolved):
        return LocalParse(task, expression, Confidence.AMBIGUOUS)
    return LocalParse(task, expression, Confidence.HIGH)


def _mentions_hint(text: str, hint_keywords: list[str] | tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(k.lower() in lowered for k in hint_keywords if k)


async def extract(
    text: str,
    now: datetime,
    chain: list[str] | tuple[str, ...] = DEFAULT_CHAIN,
    hint_keywords: list[str] | tuple[str, ...] = (),
    tz: tzinfo | None = None,
) -> ExtractionResult | None:
    """Run the extraction strategies in order and return the first usable draft.

    A message containing a hint keyword (recurrence or trigger words) skips
    the local strategy while an LLM strategy is still ahead in the chain,
    since a local parse cannot express a recurrence rule. If no strategy is
    confident, an ambiguous local parse is returned as a last resort.
    """
    fallback: ExtractionResult | None = None

    for position, strategy in enumerate(chain):
        if strategy == "local":
            llm_ahead = "llm" in chain[position + 1:]
            if llm_ahead and _mentions_hint(text, hint_keywords):
                logger.debug("Hint keyword present, deferring to LLM: %s", text[:80])
                continue
            local = parse_locally(text, now, tz)
            if local.confidence is Confidence.NONE:
                continue
            draft = ExtractionResult(
                task=local.task,
                time=local.expression,
                rule=None,
                is_all_day=not has_clock_time(local.expression or ""),
                source="local",
            )
            if local.confidence is Confidence.HIGH:
                return draft
            fallback = fallback or draft

        elif strategy == "llm":
            result = await extract_with_llm(text, now, tz)
            if result is not None:
                return result

        else:
            logger.warning("Unknown extraction strategy '%s' skipped", strategy)

    return fallback


# ---------------------------------------------------------------------------
# Range queries (/list, /history)
# ---------------------------------------------------------------------------


def _day_range(first: date, last: date, label: str, tz: tzinfo | None) -> QueryRange:
    return QueryRange(
        start=civil_to_instant(datetime.combine(first, time()), tz),
        end=civil_to_instant(datetime.combine(last, time(23, 59, 59)), tz),
        label=label,
    )


def default_list_range(now: datetime, tz: tzinfo | None = None) -> QueryRange:
    """The last 7 days through the end of today."""
    today = to_civil(now, tz).date()
    return _day_range(today - timedelta(days=7), today, "Recent", tz)


def _local_range(query: str, now: datetime, tz: tzinfo | None) -> QueryRange | None:
    q = query.strip().lower()
    today = to_civil(now, tz).date()
    monday = today - timedelta(days=today.isoweekday() - 1)
    month_start = today.replace(day=1)

    if q in ("today", "今天", "今日"):
        return _day_range(today, today, "Today", tz)
    if q in ("tomorrow", "明天"):
        tomorrow = today + timedelta(days=1)
        return _day_range(tomorrow, tomorrow, "Tomorrow", tz)
    if q in ("yesterday", "昨天"):
        yesterday = today - timedelta(days=1)
        return _day_range(yesterday, yesterday, "Yesterday", tz)
    if q in ("this week", "本週", "本周", "這週", "这周"):
        return _day_range(monday, monday + timedelta(days=6), "This week", tz)
    if q in ("next week", "下週", "下周"):
        start = monday + timedelta(days=7)
        return _day_range(start, start + timedelta(days=6), "Next week", tz)
    if q in ("last week", "上週", "上周"):
        start = monday - timedelta(days=7)
        return _day_range(start, start + timedelta(days=6), "Last week", tz)
    if q in ("this month", "本月", "這個月", "这个月"):
        last = month_start + relativedelta(months=1) - timedelta(days=1)
        return _day_range(month_start, last, "This month", tz)
    if q in ("next month", "下個月", "下个月"):
        start = month_start + relativedelta(months=1)
        return _day_range(start, start + relativedelta(months=1) - timedelta(days=1), "Next month", tz)
    if q in ("last month", "上個月", "上个月"):
        start = month_start - relativedelta(months=1)
        return _day_range(start, month_start - timedelta(days=1), "Last month", tz)
    return None


async def resolve_query_range(
    query: str, now: datetime, tz: tzinfo | None = None,
) -> QueryRange | None:
    """Resolve a /list or /history argument to a civil window.

    Common phrases are resolved locally; anything else goes to the LLM.
    Returns None if neither produces a valid window.
    """
    local = _local_range(query, now, tz)
    if local is not None:
        return local

    system_prompt = _RANGE_PROMPT.format(offset=_offset_label(now, tz), now=_prompt_now(now, tz))
    raw_text = ""
    try:
        raw_text = _clean_llm_response(
            await complete(system=system_prompt, user_message=query, max_tokens=128)
        )
        parsed = _LLMRange.model_validate(json.loads(raw_text))
    except LLMError as exc:
        logger.error("LLM range query failed: %s", exc)
        return None
    except (json.JSONDecodeError, ValidationError) as exc:
        logger.error("Unusable LLM range response: %s — raw: '%s'", exc, raw_text)
        return None

    if parsed.end < parsed.start:
        logger.warning("LLM returned an inverted range for '%s': %s", query, raw_text)
        return None

    return QueryRange(
        start=datetime.fromtimestamp(parsed.start, tz=timezone.utc),
        end=datetime.fromtimestamp(parsed.end, tz=timezone.utc),
        label=parsed.label,
    )
