"""Tests for environment-driven settings."""
from __future__ import annotations

import pytest

from config import Settings, get_settings


@pytest.mark.unit
def test_defaults(monkeypatch):
    for name in ("SCRAPE_CACHE_TTL_DAYS", "SYNC_DELAY_SECONDS", "TOKEN_REFRESH_HORIZON_DAYS"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.scrape_cache_ttl_days == 7
    assert settings.sync_delay_seconds == 2.0
    assert settings.token_refresh_horizon_days == 7
    assert settings.scrape_max_attempts == 4
    assert settings.token_refresh_hour == 2
    assert settings.data_sync_hour == 3


@pytest.mark.unit
def test_cors_origins_from_comma_separated_env(monkeypatch):
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example.com, https://b.example.com")

    settings = Settings(_env_file=None)

    assert settings.cors_origins == ["https://a.example.com", "https://b.example.com"]


@pytest.mark.unit
def test_env_overrides(monkeypatch):
    monkeypatch.setenv("SYNC_DELAY_SECONDS", "0.5")
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")

    settings = Settings(_env_file=None)

    assert settings.sync_delay_seconds == 0.5
    assert settings.scheduler_enabled is False


@pytest.mark.unit
def test_scrape_attempts_are_bounded():
    with pytest.raises(ValueError):
        Settings(_env_file=None, scrape_max_attempts=5)


@pytest.mark.unit
def test_settings_are_cached():
    assert get_settings() is get_settings()
