"""
Pytest configuration and shared fixtures.

Environment variables are set here before any package imports so that the
cached settings pick them up.
"""

import os

import pytest

os.environ.setdefault("MESSAGEBIRD_SIGNING_KEY", "test-signing-key")
os.environ.setdefault("MESSAGEBIRD_LOG_LEVEL", "WARNING")

# Clear settings cache before any app imports to ensure test env vars are used
from messagebird_signature.config import get_settings
get_settings.cache_clear()


@pytest.fixture
def signing_key() -> str:
    """Signing key shared with the test sender."""
    return os.environ["MESSAGEBIRD_SIGNING_KEY"]
