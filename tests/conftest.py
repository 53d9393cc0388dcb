"""Shared fixtures for the kvsink test suite."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
import structlog


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    """The CLI reconfigures structlog globally; undo it between tests."""
    yield
    structlog.reset_defaults()
