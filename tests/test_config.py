"""Tests for weekwise.config — settings parsing and startup validation."""

import pytest
from datetime import time

from weekwise.config import Settings, _load_settings


class TestSettingsValidators:
    def test_clock_strings_parsed(self):
        s = Settings(DEFAULT_AVAILABLE_START=" 07:30 ", DEFAULT_AVAILABLE_END="21:00")
        assert s.DEFAULT_AVAILABLE_START == time(7, 30)
        assert s.DEFAULT_AVAILABLE_END == time(21, 0)

    @pytest.mark.parametrize("raw, expected", [
        ("true", True), ("YES", True), ("1", True), ("on", True),
        ("false", False), ("no", False), ("0", False), ("", False),
    ])
    def test_flag(self, raw, expected):
        assert Settings(RESET_APPROVALS_ON_EDIT=raw).RESET_APPROVALS_ON_EDIT is expected

    def test_provider_names_normalized(self):
        s = Settings(CALENDAR_PROVIDER=" CalDAV ", LLM_PROVIDER="OpenAI")
        assert s.CALENDAR_PROVIDER == "caldav"
        assert s.LLM_PROVIDER == "openai"

    def test_numeric_strings_coerced(self):
        s = Settings(PLAN_EXPIRY_DAYS="2", CALENDAR_RETRY_BACKOFF_SECONDS="0.25")
        assert s.PLAN_EXPIRY_DAYS == 2
        assert s.CALENDAR_RETRY_BACKOFF_SECONDS == 0.25


class TestLoadSettings:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("PLAN_EXPIRY_DAYS", "3")
        monkeypatch.setenv("DEFAULT_COUNTRY", "US")
        s = _load_settings()
        assert s.PLAN_EXPIRY_DAYS == 3
        assert s.DEFAULT_COUNTRY == "US"

    def test_unknown_calendar_provider_exits(self, monkeypatch):
        monkeypatch.setenv("CALENDAR_PROVIDER", "outlook")
        with pytest.raises(SystemExit):
            _load_settings()

    def test_unknown_timezone_exits(self, monkeypatch):
        monkeypatch.setenv("TIMEZONE", "Mars/Olympus")
        with pytest.raises(SystemExit):
            _load_settings()
