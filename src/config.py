"""
Reminder Bot — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

_DEFAULT_HINT_KEYWORDS = (
    "every,daily,weekly,monthly,yearly,week,month,year,remind,"
    "每,週,周,月,年,提醒,記得,幫我"
)


def _split_csv(v: str | list) -> list[str]:
    if isinstance(v, list):
        return v
    if isinstance(v, str) and v.strip():
        return [item.strip() for item in v.split(",") if item.strip()]
    return []


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # LLM — provider-agnostic (gemini, anthropic, openai, cohere, pollinations)
    LLM_PROVIDER: str = "openai"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str
    LLM_BASE_URL: str = ""       # OpenAI-compatible endpoint override
    LLM_TIMEOUT_SECONDS: float = 15.0

    # SQLite
    DATABASE_PATH: str = "data/reminders.db"

    # Civil time: every human-facing date is parsed and rendered at this offset
    CIVIL_UTC_OFFSET_MINUTES: int = 480

    # Sweep / digest cadence
    SWEEP_INTERVAL_SECONDS: int = 60
    DIGEST_HOURS: list[int] = [9, 21]
    ALL_DAY_DEFER_MINUTES: int = 0

    # Confirmation drafts live this long before the Save button stops working
    PENDING_TTL_MINUTES: int = 30

    # Extraction strategy chain, tried in order
    EXTRACTION_CHAIN: list[str] = ["local", "llm"]
    LLM_HINT_KEYWORDS: list[str] = _split_csv(_DEFAULT_HINT_KEYWORDS)

    @field_validator("DIGEST_HOURS", mode="before")
    @classmethod
    def parse_hours(cls, v: str | list[int]) -> list[int]:
        hours = [int(h) for h in _split_csv(v)]
        for h in hours:
            if not 0 <= h <= 23:
                raise ValueError(f"Digest hour out of range: {h}")
        return hours

    @field_validator("EXTRACTION_CHAIN", mode="before")
    @classmethod
    def parse_chain(cls, v: str | list[str]) -> list[str]:
        chain = [s.lower() for s in _split_csv(v)]
        unknown = set(chain) - {"local", "llm"}
        if unknown:
            raise ValueError(f"Unknown extraction strategies: {sorted(unknown)}")
        return chain

    @field_validator("LLM_HINT_KEYWORDS", mode="before")
    @classmethod
    def parse_keywords(cls, v: str | list[str]) -> list[str]:
        return _split_csv(v)

    @field_validator("CIVIL_UTC_OFFSET_MINUTES", "SWEEP_INTERVAL_SECONDS",
                     "ALL_DAY_DEFER_MINUTES", "PENDING_TTL_MINUTES", mode="before")
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    llm_api_key = os.getenv("LLM_API_KEY", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not llm_api_key or llm_api_key.startswith("your-"):
        print("ERROR: LLM_API_KEY is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "openai"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        LLM_BASE_URL=os.getenv("LLM_BASE_URL", ""),
        LLM_TIMEOUT_SECONDS=os.getenv("LLM_TIMEOUT_SECONDS", "15"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/reminders.db"),
        CIVIL_UTC_OFFSET_MINUTES=os.getenv("CIVIL_UTC_OFFSET_MINUTES", "480"),
        SWEEP_INTERVAL_SECONDS=os.getenv("SWEEP_INTERVAL_SECONDS", "60"),
        DIGEST_HOURS=os.getenv("DIGEST_HOURS", "9,21"),
        ALL_DAY_DEFER_MINUTES=os.getenv("ALL_DAY_DEFER_MINUTES", "0"),
        PENDING_TTL_MINUTES=os.getenv("PENDING_TTL_MINUTES", "30"),
        EXTRACTION_CHAIN=os.getenv("EXTRACTION_CHAIN", "local,llm"),
        LLM_HINT_KEYWORDS=os.getenv("LLM_HINT_KEYWORDS", _DEFAULT_HINT_KEYWORDS),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
