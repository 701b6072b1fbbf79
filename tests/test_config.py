"""Tests for src.config — Settings validation."""

import pytest
from pydantic import ValidationError

from src.config import Settings


def _settings(**overrides):
    values = {"TELEGRAM_BOT_TOKEN": "t", "LLM_API_KEY": "k"}
    values.update(overrides)
    return Settings(**values)


def test_defaults():
    s = _settings()
    assert s.CIVIL_UTC_OFFSET_MINUTES == 480
    assert s.DIGEST_HOURS == [9, 21]
    assert s.EXTRACTION_CHAIN == ["local", "llm"]
    assert s.ALL_DAY_DEFER_MINUTES == 0
    assert "every" in s.LLM_HINT_KEYWORDS


def test_digest_hours_from_csv():
    assert _settings(DIGEST_HOURS="8, 20").DIGEST_HOURS == [8, 20]


def test_digest_hour_out_of_range():
    with pytest.raises(ValidationError):
        _settings(DIGEST_HOURS="9,24")


def test_chain_is_lowercased():
    assert _settings(EXTRACTION_CHAIN="LLM").EXTRACTION_CHAIN == ["llm"]


def test_unknown_strategy_rejected():
    with pytest.raises(ValidationError):
        _settings(EXTRACTION_CHAIN="local,regex")


def test_offset_from_string():
    assert _settings(CIVIL_UTC_OFFSET_MINUTES="-300").CIVIL_UTC_OFFSET_MINUTES == -300
