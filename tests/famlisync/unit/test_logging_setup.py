"""Unit tests for logging setup and operation id propagation."""

import logging
import os

import pytest
from colorlog import ColoredFormatter

from famlisync import _init_logging
from famlisync.core.logging_setup import (
    OperationIdFilter,
    configure_logging,
    get_logging_status,
    get_operation_id,
    operation_scope,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def restore_levels(monkeypatch: pytest.MonkeyPatch):
    """Put logger levels and the FAMLISYNC_* environment back after the test."""
    for key in [k for k in os.environ if k.startswith("FAMLISYNC_")]:
        monkeypatch.delenv(key)
    names = ["", "famlisync", "asyncio", "icalendar"]
    saved = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)


def test_operation_scope_binds_and_restores_id() -> None:
    assert get_operation_id() == "-"

    with operation_scope("create") as op_id:
        assert op_id.startswith("create-")
        assert get_operation_id() == op_id
        with operation_scope("delete") as inner:
            assert get_operation_id() == inner
        assert get_operation_id() == op_id

    assert get_operation_id() == "-"


def test_filter_stamps_records_with_operation_id() -> None:
    record = logging.LogRecord("famlisync", logging.INFO, __file__, 1, "msg", None, None)

    with operation_scope("update") as op_id:
        assert OperationIdFilter().filter(record) is True

    assert record.operation_id == op_id


def test_configure_logging_debug_mode(restore_levels) -> None:
    configure_logging(debug_mode=True)

    status = get_logging_status()
    assert status["famlisync"] == "DEBUG"
    assert status["root"] == "DEBUG"
    assert status["asyncio"] == "WARNING"
    assert status["icalendar"] == "WARNING"


def test_force_debug_overrides_debug_mode(restore_levels) -> None:
    configure_logging(debug_mode=True, force_debug=False)
    assert get_logging_status()["famlisync"] == "INFO"


def test_log_level_env_overrides_root(restore_levels, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FAMLISYNC_LOG_LEVEL", "warning")

    configure_logging()

    assert get_logging_status()["root"] == "WARNING"
    assert get_logging_status()["famlisync"] == "INFO"


def test_init_logging_installs_colored_handler(restore_levels) -> None:
    root = logging.getLogger()
    saved = root.handlers[:]
    root.handlers.clear()
    try:
        _init_logging("WARNING")

        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, ColoredFormatter)
    finally:
        root.handlers[:] = saved


def test_init_logging_debug_env_wins(restore_levels, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FAMLISYNC_DEBUG", "yes")

    _init_logging("ERROR")

    assert logging.getLogger().level == logging.DEBUG


def test_repeated_configure_adds_one_operation_filter(restore_levels) -> None:
    root = logging.getLogger()
    handler = logging.NullHandler()
    root.addHandler(handler)
    try:
        configure_logging()
        configure_logging(debug_mode=True)

        assert sum(isinstance(f, OperationIdFilter) for f in handler.filters) == 1
    finally:
        root.removeHandler(handler)
