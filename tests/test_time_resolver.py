"""Tests for src.core.time_resolver — civil-time resolution and task cleanup."""

from datetime import date, datetime, timedelta, timezone

import pytest

from src.core.time_resolver import (
    PLACEHOLDER_TASK,
    Unresolved,
    civil_midnight,
    civil_to_instant,
    civil_tz,
    format_instant,
    from_timestamp,
    has_clock_time,
    resolve_absolute,
    strip_time_language,
    to_civil,
    to_timestamp,
)

CIVIL = timezone(timedelta(hours=8))


def civil(*args) -> datetime:
    return datetime(*args, tzinfo=CIVIL).astimezone(timezone.utc)


# 2025-12-24 20:00 civil (12:00Z), a Wednesday
REF = civil(2025, 12, 24, 20, 0)


# ---------------------------------------------------------------------------
# Civil-time helpers
# ---------------------------------------------------------------------------


class TestCivilHelpers:
    def test_civil_tz_offset(self):
        assert civil_tz(480).utcoffset(None) == timedelta(hours=8)
        assert civil_tz(-300).utcoffset(None) == timedelta(hours=-5)

    def test_naive_wall_time_is_civil_not_utc(self):
        instant = civil_to_instant(datetime(2025, 12, 25, 9, 0))
        assert instant == datetime(2025, 12, 25, 1, 0, tzinfo=timezone.utc)

    def test_to_civil_rejects_naive(self):
        with pytest.raises(ValueError):
            to_civil(datetime(2025, 1, 1))

    def test_civil_midnight(self):
        assert civil_midnight(date(2025, 12, 25)) == datetime(2025, 12, 24, 16, 0, tzinfo=timezone.utc)

    def test_timestamp_round_trip(self):
        assert from_timestamp(to_timestamp(REF)) == REF


class TestFormatInstant:
    def test_none_is_no_time_limit(self):
        assert format_instant(None) == "No time limit"

    def test_timed(self):
        assert format_instant(civil(2025, 12, 25, 9, 5)) == "2025-12-25 09:05"

    def test_all_day(self):
        assert format_instant(civil(2025, 12, 25), all_day=True) == "2025-12-25 (all day)"

    def test_short_drops_year(self):
        assert format_instant(civil(2025, 12, 25, 9, 5), short=True) == "12-25 09:05"


# ---------------------------------------------------------------------------
# resolve_absolute
# ---------------------------------------------------------------------------


class TestResolveFullyQualified:
    def test_offsetless_datetime_is_civil(self):
        result = resolve_absolute("2025-12-25T09:00:00", REF)
        assert result == datetime(2025, 12, 25, 1, 0, tzinfo=timezone.utc)

    def test_space_separated_datetime_is_civil(self):
        assert resolve_absolute("2025-12-25 09:00", REF) == civil(2025, 12, 25, 9, 0)

    def test_explicit_offset(self):
        assert resolve_absolute("2025-12-25T09:00:00+08:00", REF) == civil(2025, 12, 25, 9, 0)

    def test_zulu(self):
        result = resolve_absolute("2025-12-25T01:00:00Z", REF)
        assert result == civil(2025, 12, 25, 9, 0)

    def test_date_only_is_civil_midnight(self):
        assert resolve_absolute("2025-12-25", REF) == civil(2025, 12, 25)

    def test_invalid_calendar_date(self):
        assert isinstance(resolve_absolute("2025-02-30", REF), Unresolved)

    def test_result_is_utc(self):
        result = resolve_absolute("2025-12-25T09:00:00", REF)
        assert result.utcoffset() == timedelta(0)


class TestResolveBareClock:
    def test_later_today(self):
        assert resolve_absolute("21:00", REF) == civil(2025, 12, 24, 21, 0)

    def test_earlier_rolls_exactly_one_day(self):
        result = resolve_absolute("19:00", REF)
        assert result == civil(2025, 12, 24, 19, 0) + timedelta(days=1)

    def test_equal_to_reference_rolls(self):
        assert resolve_absolute("20:00", REF) == civil(2025, 12, 25, 20, 0)

    def test_seconds(self):
        assert resolve_absolute("21:30:15", REF) == civil(2025, 12, 24, 21, 30, 15)

    def test_twelve_hour(self):
        assert resolve_absolute("9pm", REF) == civil(2025, 12, 24, 21, 0)
        assert resolve_absolute("9:30am", REF) == civil(2025, 12, 25, 9, 30)

    def test_out_of_range(self):
        assert isinstance(resolve_absolute("25:00", REF), Unresolved)

    def test_never_in_the_past(self):
        for hour in range(24):
            result = resolve_absolute(f"{hour:02d}:00", REF)
            assert REF < result <= REF + timedelta(days=1)


class TestResolveBareDate:
    def test_later_this_year(self):
        assert resolve_absolute("12-25", REF) == civil(2025, 12, 25)

    def test_past_date_rolls_one_year(self):
        assert resolve_absolute("01-01", REF) == civil(2026, 1, 1)

    def test_today_midnight_already_passed_rolls(self):
        assert resolve_absolute("12-24", REF) == civil(2026, 12, 24)

    def test_slash_form(self):
        assert resolve_absolute("1/1", REF) == civil(2026, 1, 1)

    def test_cjk_form(self):
        assert resolve_absolute("1月1日", REF) == civil(2026, 1, 1)

    def test_feb_29_in_non_leap_year_goes_to_next_leap_year(self):
        reference = civil(2025, 3, 1, 10, 0)
        assert resolve_absolute("02-29", reference) == civil(2028, 2, 29)

    def test_feb_29_in_leap_year(self):
        reference = civil(2023, 3, 1, 10, 0)
        assert resolve_absolute("02-29", reference) == civil(2024, 2, 29)

    def test_invalid_month(self):
        assert isinstance(resolve_absolute("13-01", REF), Unresolved)


class TestResolveRelative:
    def test_tomorrow_is_civil_midnight(self):
        assert resolve_absolute("tomorrow", REF) == civil(2025, 12, 25)

    def test_tomorrow_with_clock(self):
        assert resolve_absolute("tomorrow 09:00", REF) == civil(2025, 12, 25, 9, 0)

    def test_tomorrow_at_9pm(self):
        assert resolve_absolute("tomorrow at 9pm", REF) == civil(2025, 12, 25, 21, 0)

    def test_day_after_tomorrow(self):
        assert resolve_absolute("day after tomorrow", REF) == civil(2025, 12, 26)

    def test_today_does_not_roll_forward(self):
        assert resolve_absolute("today", REF) == civil(2025, 12, 24)

    def test_cjk_tomorrow_afternoon(self):
        assert resolve_absolute("明天 下午3點", REF) == civil(2025, 12, 25, 15, 0)

    def test_cjk_half_hour(self):
        assert resolve_absolute("後天早上8點半", REF) == civil(2025, 12, 26, 8, 30)

    def test_cjk_noon_afternoon_hour(self):
        reference = civil(2025, 12, 24, 10, 0)
        assert resolve_absolute("明天中午1點", reference) == civil(2025, 12, 25, 13, 0)

    def test_cjk_noon_twelve(self):
        assert resolve_absolute("明天中午12點", REF) == civil(2025, 12, 25, 12, 0)

    def test_cjk_noon_eleven_stays_morning(self):
        assert resolve_absolute("明天中午11點半", REF) == civil(2025, 12, 25, 11, 30)

    def test_cjk_twelve_at_night_is_next_midnight(self):
        assert resolve_absolute("明天晚上12點", REF) == civil(2025, 12, 26, 0, 0)

    def test_cjk_evening_hour(self):
        assert resolve_absolute("明天晚上8點", REF) == civil(2025, 12, 25, 20, 0)

    def test_in_n_days(self):
        assert resolve_absolute("in 3 days", REF) == civil(2025, 12, 27)

    def test_in_n_months_uses_calendar_months(self):
        reference = civil(2025, 1, 31, 10, 0)
        assert resolve_absolute("in 1 month", reference) == civil(2025, 2, 28)

    def test_cjk_weeks_later(self):
        assert resolve_absolute("2週後", REF) == civil(2026, 1, 7)


class TestResolveOther:
    def test_natural_language_via_dateparser(self):
        result = resolve_absolute("December 31 2025 10:00", REF)
        assert result == civil(2025, 12, 31, 10, 0)

    def test_gibberish_is_unresolved(self):
        result = resolve_absolute("zzzz qqqq", REF)
        assert isinstance(result, Unresolved)
        assert result.expression == "zzzz qqqq"

    def test_empty_is_unresolved(self):
        assert isinstance(resolve_absolute("", REF), Unresolved)
        assert isinstance(resolve_absolute(None, REF), Unresolved)

    def test_naive_reference_rejected(self):
        with pytest.raises(ValueError):
            resolve_absolute("21:00", datetime(2025, 12, 24, 20, 0))

    def test_custom_offset(self):
        tz = civil_tz(-300)
        reference = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
        result = resolve_absolute("2025-06-02T09:00:00", reference, tz)
        assert result == datetime(2025, 6, 2, 14, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Task cleanup
# ---------------------------------------------------------------------------


class TestStripTimeLanguage:
    def test_english_trigger_and_time(self):
        assert strip_time_language("remind me to call mom tomorrow at 9pm") == "call mom"

    def test_cjk_trigger_and_time(self):
        assert strip_time_language("提醒我明天下午3點開會") == "開會"

    def test_recurrence_words(self):
        assert strip_time_language("gym every monday 07:00") == "gym"

    def test_matched_phrase_removed(self):
        assert strip_time_language("buy milk next friday", matched="next friday") == "buy milk"

    def test_nothing_left_gives_placeholder(self):
        assert strip_time_language("remind me tomorrow") == PLACEHOLDER_TASK
        assert strip_time_language("") == PLACEHOLDER_TASK

    def test_keeps_plain_task(self):
        assert strip_time_language("water the plants") == "water the plants"


class TestHasClockTime:
    def test_detects(self):
        assert has_clock_time("tomorrow 09:00")
        assert has_clock_time("at 9pm")
        assert has_clock_time("下午3點")

    def test_absent(self):
        assert not has_clock_time("tomorrow")
        assert not has_clock_time("")
