"""Shared fixtures for the tyvt test suite."""

import pytest
import structlog


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo any structlog configuration a test (e.g. the CLI) installed"""
    yield
    structlog.reset_defaults()
