"""Shared test fixtures."""

import pytest
import structlog


@pytest.fixture(autouse=True)
def reset_logging():
    """main() configures structlog process-wide; undo it between tests."""
    yield
    structlog.reset_defaults()
