"""Shared fixtures for CLI tests."""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import pytest


@pytest.fixture(autouse=True)
def mock_logging() -> Iterator[MagicMock]:
    """Keep CLI invocations from reconfiguring logging or writing log files."""
    with patch("release_operations_manager.cli.main.configure_logging") as mock_configure:
        yield mock_configure
