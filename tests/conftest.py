"""Shared pytest configuration for the famlisync test suite."""

import logging
from typing import Any

import pytest


def pytest_configure(config: Any) -> None:
    """Register markers used across the suite."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "critical_path: Core functionality tests")


@pytest.fixture(autouse=True)
def _quiet_third_party_logs() -> None:
    logging.getLogger("asyncio").setLevel(logging.WARNING)
