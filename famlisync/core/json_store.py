"""Atomic JSON file helpers shared by the link registry and the family directory."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from famlisync.exceptions import RegistryError

logger = logging.getLogger(__name__)


def read_json_object(path: Path) -> dict[str, Any]:
    """Read a JSON object from disk.

    A missing file is an empty store. A file that exists but cannot be parsed
    raises RegistryError instead of silently starting empty, since that would
    drop every link on the next write.

    Raises:
        RegistryError: if the file is unreadable or its root is not an object
    """
    if not path.exists():
        logger.debug("Store file not found; starting empty: %s", path)
        return {}

    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        raise RegistryError(f"Failed to read {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise RegistryError(f"{path}: JSON root must be an object")
    return data


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` atomically.

    Writes to a temporary file in the same directory then replaces into place,
    removing the temporary file if anything fails.

    Raises:
        OSError: if the file could not be written
    """
    dirpath = path.parent
    tmp_path: Path | None = None
    try:
        dirpath.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", dir=dirpath, delete=False, encoding="utf-8", suffix=".tmp"
        ) as tf:
            tmp_path = Path(tf.name)
            tf.write(text)
            tf.flush()
            with contextlib.suppress(OSError):
                os.fsync(tf.fileno())
        tmp_path.replace(path)
    except OSError:
        if tmp_path is not None:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
        raise


def atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    """Persist ``data`` to ``path`` atomically as indented JSON.

    Raises:
        RegistryError: if the data cannot be serialized or the file written
    """
    try:
        text = json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True)
        atomic_write_text(path, text)
    except (OSError, TypeError, ValueError) as exc:
        raise RegistryError(f"Failed to persist {path}: {exc}") from exc
