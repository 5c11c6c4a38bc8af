"""
Central logging configuration for famlisync.

Every group operation of the sync coordinator runs under an operation id so the
per-calendar writes it performs can be correlated in the log output.
"""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Optional

# Context variable holding the id of the current group operation
operation_id_var: ContextVar[str] = ContextVar("operation_id", default="")

_NO_OPERATION = "-"


def get_operation_id() -> str:
    """Return the current operation id, or "-" outside of an operation."""
    return operation_id_var.get() or _NO_OPERATION


@contextmanager
def operation_scope(kind: str) -> Iterator[str]:
    """Bind a fresh operation id for the duration of a group operation.

    Args:
        kind: Short operation label used as the id prefix (e.g. "create")

    Yields:
        The operation id
    """
    op_id = f"{kind}-{uuid.uuid4().hex[:8]}"
    token = operation_id_var.set(op_id)
    try:
        yield op_id
    finally:
        operation_id_var.reset(token)


class OperationIdFilter(logging.Filter):
    """Add the current operation id to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.operation_id = get_operation_id()
        return True


def configure_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logging levels for famlisync.

    Args:
        debug_mode: Whether to enable debug logging for famlisync modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        FAMLISYNC_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        FAMLISYNC_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("FAMLISYNC_DEBUG", "").lower() in ("1", "true", "yes")
    env_log_level = os.getenv("FAMLISYNC_LOG_LEVEL", "").upper()

    if force_debug is not None:
        final_debug = force_debug
    elif env_debug:
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    operation_filter = OperationIdFilter()

    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(root_level)
        formatter = logging.Formatter(
            "[%(asctime)s] [%(operation_id)s] %(levelname)s - %(name)s - %(message)s"
        )
        handler.setFormatter(formatter)
        handler.addFilter(operation_filter)
        root_logger.addHandler(handler)
    else:
        for existing_handler in root_logger.handlers:
            if not any(isinstance(f, OperationIdFilter) for f in existing_handler.filters):
                existing_handler.addFilter(operation_filter)

    logger_config: dict[str, int] = {
        "asyncio": logging.WARNING,
        "icalendar": logging.WARNING,
        "famlisync": logging.DEBUG if final_debug else logging.INFO,
    }

    for logger_name, level in logger_config.items():
        logging.getLogger(logger_name).setLevel(level)

    if final_debug:
        root_logger.info("Debug logging enabled for famlisync modules")


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in ("famlisync", "asyncio", "icalendar"):
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status
