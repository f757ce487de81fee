"""
WeekWise — Centralized configuration.

Loads all settings from .env and validates them once at import time.
Every other module reads configuration through the `settings` singleton.
"""

from __future__ import annotations

import os
import sys
from datetime import time
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from weekwise/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

_CALENDAR_PROVIDERS = ("google", "caldav", "none")


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # LLM planner: "gemini" | "anthropic" | "openai". Empty key → deterministic only.
    LLM_PROVIDER: str = "anthropic"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str = ""
    LLM_MAX_TOKENS: int = 4096

    # Calendar provider: "google" | "caldav" | "none"
    CALENDAR_PROVIDER: str = "google"

    # CalDAV (only needed when CALENDAR_PROVIDER=caldav)
    CALDAV_URL: str = ""
    CALDAV_USERNAME: str = ""
    CALDAV_PASSWORD: str = ""
    CALDAV_CALENDAR_NAME: str = ""

    # SQLite
    DATABASE_PATH: str = "data/weekwise.db"

    TIMEZONE: str = "Europe/London"
    DEFAULT_COUNTRY: str = "UK"

    # Personal availability window used when a user has not configured one
    DEFAULT_AVAILABLE_START: time = time(6, 0)
    DEFAULT_AVAILABLE_END: time = time(22, 0)

    # Scheduling rules
    FIXED_TIME_TOLERANCE_MINUTES: int = 15
    PLAN_EXPIRY_DAYS: int = 1
    RESET_APPROVALS_ON_EDIT: bool = True

    # Calendar mirroring (best effort)
    CALENDAR_RETRY_ATTEMPTS: int = 3
    CALENDAR_RETRY_BACKOFF_SECONDS: float = 0.5

    LOG_LEVEL: str = "INFO"

    @field_validator("DEFAULT_AVAILABLE_START", "DEFAULT_AVAILABLE_END", mode="before")
    @classmethod
    def parse_clock(cls, v: str | time) -> time:
        if isinstance(v, time):
            return v
        return time.fromisoformat(v.strip())

    @field_validator("RESET_APPROVALS_ON_EDIT", mode="before")
    @classmethod
    def parse_flag(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return v.strip().lower() in ("1", "true", "yes", "on")

    @field_validator("CALENDAR_PROVIDER", "LLM_PROVIDER", mode="before")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        return v.strip().lower()


def _load_settings() -> Settings:
    """Load settings from environment, validating the keys that must be sane."""
    calendar_provider = os.getenv("CALENDAR_PROVIDER", "google").strip().lower()
    if calendar_provider not in _CALENDAR_PROVIDERS:
        print(
            f"ERROR: CALENDAR_PROVIDER must be one of {', '.join(_CALENDAR_PROVIDERS)}",
            file=sys.stderr,
        )
        sys.exit(1)

    timezone = os.getenv("TIMEZONE", "Europe/London")
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        print(f"ERROR: TIMEZONE {timezone!r} is not a known IANA zone", file=sys.stderr)
        sys.exit(1)

    return Settings(
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "anthropic"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=os.getenv("LLM_API_KEY", ""),
        LLM_MAX_TOKENS=os.getenv("LLM_MAX_TOKENS", "4096"),
        CALENDAR_PROVIDER=calendar_provider,
        CALDAV_URL=os.getenv("CALDAV_URL", ""),
        CALDAV_USERNAME=os.getenv("CALDAV_USERNAME", ""),
        CALDAV_PASSWORD=os.getenv("CALDAV_PASSWORD", ""),
        CALDAV_CALENDAR_NAME=os.getenv("CALDAV_CALENDAR_NAME", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/weekwise.db"),
        TIMEZONE=timezone,
        DEFAULT_COUNTRY=os.getenv("DEFAULT_COUNTRY", "UK"),
        DEFAULT_AVAILABLE_START=os.getenv("DEFAULT_AVAILABLE_START", "06:00"),
        DEFAULT_AVAILABLE_END=os.getenv("DEFAULT_AVAILABLE_END", "22:00"),
        FIXED_TIME_TOLERANCE_MINUTES=os.getenv("FIXED_TIME_TOLERANCE_MINUTES", "15"),
        PLAN_EXPIRY_DAYS=os.getenv("PLAN_EXPIRY_DAYS", "1"),
        RESET_APPROVALS_ON_EDIT=os.getenv("RESET_APPROVALS_ON_EDIT", "true"),
        CALENDAR_RETRY_ATTEMPTS=os.getenv("CALENDAR_RETRY_ATTEMPTS", "3"),
        CALENDAR_RETRY_BACKOFF_SECONDS=os.getenv("CALENDAR_RETRY_BACKOFF_SECONDS", "0.5"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton, imported by all other modules as:
#   from weekwise.config import settings
settings = _load_settings()
