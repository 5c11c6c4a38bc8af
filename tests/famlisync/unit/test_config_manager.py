"""Tests for famlisync.core.config_manager and timezone helpers."""

import os
from datetime import UTC, datetime
from pathlib import Path

import pytest

from famlisync.core.config_manager import ConfigManager, FamliSyncSettings, parse_env_file
from famlisync.core.timezone_utils import (
    DEFAULT_TIMEZONE,
    TEST_TIME_ENV,
    ensure_timezone_aware,
    now_utc,
    resolve_timezone,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Isolated copy of the environment without FAMLISYNC_* variables."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("FAMLISYNC_")}
    monkeypatch.setattr(os, "environ", env)
    return env


def test_parse_env_file(tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\n"
        "\n"
        "FAMLISYNC_TIMEZONE = 'Europe/London'\n"
        'FAMLISYNC_DATA_DIR="/data/family"\n'
        "NOT_A_PAIR\n"
        "=orphan\n",
        encoding="utf-8",
    )

    assert parse_env_file(env_file) == {
        "FAMLISYNC_TIMEZONE": "Europe/London",
        "FAMLISYNC_DATA_DIR": "/data/family",
    }
    assert parse_env_file(tmp_path / "missing.env") == {}


def test_env_file_does_not_override_environment(tmp_path: Path, clean_env: dict[str, str]) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("FAMLISYNC_TIMEZONE=Europe/London\nFAMLISYNC_FUTURE_DAYS=7\n", encoding="utf-8")
    clean_env["FAMLISYNC_TIMEZONE"] = "Asia/Tokyo"

    loaded = ConfigManager(env_file).load_env_file()

    assert loaded == ["FAMLISYNC_FUTURE_DAYS"]
    assert clean_env["FAMLISYNC_TIMEZONE"] == "Asia/Tokyo"


def test_load_settings_from_environment(tmp_path: Path, clean_env: dict[str, str]) -> None:
    clean_env.update(
        {
            "FAMLISYNC_DATA_DIR": str(tmp_path),
            "FAMLISYNC_FUTURE_DAYS": "7",
            "FAMLISYNC_EXTERNAL_EDIT_SKEW_SECONDS": "5",
            "FAMLISYNC_TIMEZONE": "Europe/London",
            "FAMLISYNC_DEBUG": "true",
        }
    )

    settings = ConfigManager(tmp_path / "absent.env").load_settings()

    assert settings.data_dir == tmp_path
    assert settings.registry_path == tmp_path / "links.json"
    assert settings.directory_path == tmp_path / "family.json"
    assert settings.ics_dir == tmp_path / "calendars"
    assert settings.agenda_future_days == 7
    assert settings.external_edit_skew_seconds == 5
    assert settings.timezone == "Europe/London"
    assert settings.debug is True


def test_invalid_and_negative_integers_keep_defaults(tmp_path: Path, clean_env: dict[str, str]) -> None:
    clean_env.update({"FAMLISYNC_RECURRENCE_HORIZON_DAYS": "lots", "FAMLISYNC_PAST_DAYS": "-3"})

    cfg = ConfigManager(tmp_path / "absent.env").build_config_from_env()

    assert "recurrence_horizon_days" not in cfg
    assert "agenda_past_days" not in cfg
    defaults = FamliSyncSettings()
    assert defaults.recurrence_horizon_days == 365
    assert defaults.timezone == DEFAULT_TIMEZONE


def test_explicit_paths_win_over_data_dir(tmp_path: Path) -> None:
    settings = FamliSyncSettings(data_dir=tmp_path, registry_path=tmp_path / "elsewhere.json").resolved()
    assert settings.registry_path == tmp_path / "elsewhere.json"
    assert settings.directory_path == tmp_path / "family.json"


def test_now_utc_honours_test_time_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(TEST_TIME_ENV, "2025-10-27T08:20:00-07:00")
    assert now_utc() == datetime(2025, 10, 27, 15, 20, tzinfo=UTC)

    monkeypatch.setenv(TEST_TIME_ENV, "2025-10-27T08:20:00")
    assert now_utc() == datetime(2025, 10, 27, 8, 20, tzinfo=UTC)

    monkeypatch.setenv(TEST_TIME_ENV, "not a time")
    assert now_utc().tzinfo is not None


def test_resolve_timezone_falls_back_on_unknown_names() -> None:
    assert resolve_timezone("Europe/London").key == "Europe/London"
    assert resolve_timezone("Mars/Olympus_Mons").key == DEFAULT_TIMEZONE
    assert resolve_timezone(None, "UTC").key == "UTC"


def test_ensure_timezone_aware() -> None:
    assert ensure_timezone_aware(datetime(2025, 1, 1)).tzinfo is UTC
    aware = datetime(2025, 1, 1, tzinfo=UTC)
    assert ensure_timezone_aware(aware) is aware


def test_zero_horizon_and_refresh_interval_keep_defaults(tmp_path: Path, clean_env: dict[str, str]) -> None:
    clean_env.update(
        {
            "FAMLISYNC_RECURRENCE_HORIZON_DAYS": "0",
            "FAMLISYNC_REFRESH_INTERVAL": "0",
            "FAMLISYNC_EXTERNAL_EDIT_SKEW_SECONDS": "0",
        }
    )

    settings = ConfigManager(tmp_path / "absent.env").load_settings()

    assert settings.recurrence_horizon_days == 365
    assert settings.refresh_interval_seconds == 300
    assert settings.external_edit_skew_seconds == 0
