"""Tests for centralized Settings and the get_settings cache."""

from __future__ import annotations

from pathlib import Path

import pytest

from emv.config import Settings, get_settings


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    """Clear get_settings lru_cache before each test."""
    get_settings.cache_clear()


class TestSettings:
    """Verify defaults and environment overrides."""

    def test_settings_defaults(self) -> None:
        s = Settings(_env_file=None)  # type: ignore[call-arg]

        assert s.production is False
        assert s.api_port == 8000
        assert s.database_path == Path("data/emv.db")
        assert s.default_user_id == "demo-user"
        assert s.rate_table_path is None

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EMV_PRODUCTION", "true")
        monkeypatch.setenv("EMV_API_PORT", "9090")
        monkeypatch.setenv("EMV_RATE_TABLE_PATH", "config/rates.yaml")

        s = Settings(_env_file=None)  # type: ignore[call-arg]

        assert s.production is True
        assert s.api_port == 9090
        assert s.rate_table_path == Path("config/rates.yaml")

    def test_unprefixed_env_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("API_PORT", "9090")

        s = Settings(_env_file=None)  # type: ignore[call-arg]

        assert s.api_port == 8000


class TestGetSettings:
    """Verify caching and failure handling."""

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()

    def test_cache_clear_rebuilds(self, monkeypatch: pytest.MonkeyPatch) -> None:
        first = get_settings()
        monkeypatch.setenv("EMV_DEFAULT_USER_ID", "someone")
        get_settings.cache_clear()
        second = get_settings()

        assert second is not first
        assert second.default_user_id == "someone"

    def test_invalid_settings_exit(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EMV_API_PORT", "not-a-port")

        with pytest.raises(SystemExit) as exc_info:
            get_settings()

        assert exc_info.value.code == 1
