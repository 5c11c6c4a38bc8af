"""Configuration management for famlisync."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from famlisync.core.timezone_utils import DEFAULT_TIMEZONE

logger = logging.getLogger(__name__)

ENV_PREFIX = "FAMLISYNC_"


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Args:
        path: Path to .env file

    Returns:
        Dictionary of key-value pairs from the .env file.
        Empty dict if file doesn't exist or cannot be read.

    Note:
        - Skips empty lines and comments (lines starting with #)
        - Strips quotes (both single and double) from values
        - Handles KEY=VALUE format with optional whitespace
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}

    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Failed to read .env file (continuing): %s", str(path), exc_info=True)
        return {}

    for raw_line in content.splitlines():
        line = raw_line.strip()

        if not line or line.startswith("#"):
            continue

        if "=" not in line:
            continue

        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip().strip('"').strip("'")

        if key:
            result[key] = val

    return result


def _default_data_dir() -> Path:
    return Path.home() / ".local" / "share" / "famlisync"


@dataclass
class FamliSyncSettings:
    """Runtime settings for the sync engine and its CLI.

    Paths left as None are derived from ``data_dir`` by ``resolved()``.
    """

    data_dir: Path = field(default_factory=_default_data_dir)
    registry_path: Path | None = None
    directory_path: Path | None = None
    ics_dir: Path | None = None
    timezone: str = DEFAULT_TIMEZONE

    # Sync behaviour
    external_edit_skew_seconds: int = 2
    recurrence_horizon_days: int = 365

    # Display / refresh
    refresh_interval_seconds: int = 300
    agenda_past_days: int = 0
    agenda_future_days: int = 30
    recurrence_chip_limit: int = 4

    debug: bool = False

    def resolved(self) -> FamliSyncSettings:
        """Return a copy with every derived path filled in."""
        return FamliSyncSettings(
            data_dir=self.data_dir,
            registry_path=self.registry_path or self.data_dir / "links.json",
            directory_path=self.directory_path or self.data_dir / "family.json",
            ics_dir=self.ics_dir or self.data_dir / "calendars",
            timezone=self.timezone,
            external_edit_skew_seconds=self.external_edit_skew_seconds,
            recurrence_horizon_days=self.recurrence_horizon_days,
            refresh_interval_seconds=self.refresh_interval_seconds,
            agenda_past_days=self.agenda_past_days,
            agenda_future_days=self.agenda_future_days,
            recurrence_chip_limit=self.recurrence_chip_limit,
            debug=self.debug,
        )


# env suffix -> integer settings field
_INT_FIELDS: dict[str, str] = {
    "EXTERNAL_EDIT_SKEW_SECONDS": "external_edit_skew_seconds",
    "RECURRENCE_HORIZON_DAYS": "recurrence_horizon_days",
    "REFRESH_INTERVAL": "refresh_interval_seconds",
    "PAST_DAYS": "agenda_past_days",
    "FUTURE_DAYS": "agenda_future_days",
    "RECURRENCE_CHIP_LIMIT": "recurrence_chip_limit",
}

# integer fields that must be at least 1; the rest only reject negatives
_POSITIVE_INT_FIELDS = frozenset({"recurrence_horizon_days", "refresh_interval_seconds"})

_PATH_FIELDS: dict[str, str] = {
    "DATA_DIR": "data_dir",
    "REGISTRY_PATH": "registry_path",
    "DIRECTORY_PATH": "directory_path",
    "ICS_DIR": "ics_dir",
}


class ConfigManager:
    """Manages famlisync configuration from environment variables and .env files."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        parsed = parse_env_file(self.env_file_path)

        set_keys = []
        for key, val in parsed.items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))

        return set_keys

    def build_config_from_env(self) -> dict[str, Any]:
        """Build a configuration dictionary from FAMLISYNC_* environment variables.

        Invalid or out-of-range integers are logged and skipped so the dataclass
        default applies.
        """
        cfg: dict[str, Any] = {}

        for suffix, name in _PATH_FIELDS.items():
            raw = os.environ.get(ENV_PREFIX + suffix)
            if raw:
                cfg[name] = Path(raw).expanduser()

        for suffix, name in _INT_FIELDS.items():
            raw = os.environ.get(ENV_PREFIX + suffix)
            if not raw:
                continue
            try:
                value = int(raw)
            except ValueError:
                logger.warning("Invalid %s%s=%r; ignoring", ENV_PREFIX, suffix, raw)
                continue
            minimum = 1 if name in _POSITIVE_INT_FIELDS else 0
            if value < minimum:
                logger.warning(
                    "Out of range %s%s=%r (minimum %d); ignoring", ENV_PREFIX, suffix, raw, minimum
                )
                continue
            cfg[name] = value

        tz = os.environ.get(ENV_PREFIX + "TIMEZONE")
        if tz:
            cfg["timezone"] = tz

        debug = os.environ.get(ENV_PREFIX + "DEBUG", "")
        if debug:
            cfg["debug"] = debug.strip().lower() in ("1", "true", "yes", "on")

        return cfg

    def load_settings(self) -> FamliSyncSettings:
        """Load .env file and build resolved settings from the environment.

        This is the main entry point for loading configuration.
        """
        self.load_env_file()
        return FamliSyncSettings(**self.build_config_from_env()).resolved()
