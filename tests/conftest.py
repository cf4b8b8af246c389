"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the TESTING environment variable so no .env file is loaded, and
pins the limiter to the in-memory backend.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_IP", "10")
os.environ.setdefault("RATE_LIMIT_TOKEN", "100")
os.environ.setdefault("BLOCK_DURATION_IP", "300")
os.environ.setdefault("BLOCK_DURATION_TOKEN", "600")
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-admin-key,other-admin-key")

from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402

from app.core.rate_limit import set_rate_limiter_service  # noqa: E402


@pytest.fixture
def clock() -> Mock:
    """Controllable time source starting at UNIX second 1000."""
    return Mock(return_value=1000.0)


@pytest.fixture(autouse=True)
def _reset_rate_limiter_service():
    """Drop the cached decision service so each test starts from clean state."""
    set_rate_limiter_service(None)
    yield
    set_rate_limiter_service(None)
