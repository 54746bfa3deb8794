"""
Pytest configuration and fixtures for portalcrypt tests.

Provides common fixtures and test utilities for unit and integration tests.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from portalcrypt.kdf import KeyCache, Pbkdf2KeyDeriver, PortalKey, derive_key

PASSPHRASE = "horse-battery-staple"
DESKTOP_ID = "desktop-abc123"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test data.

    Yields:
        Path: Temporary directory path

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp(prefix="portalcrypt_test_"))
    try:
        yield tmp
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep PORTALCRYPT_* variables from the developer shell out of tests."""
    for name in list(os.environ):
        if name.startswith("PORTALCRYPT_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(scope="session")
def portal_key() -> PortalKey:
    """Key for the reference pairing, with the default iteration count."""
    return derive_key(PASSPHRASE, DESKTOP_ID)


@pytest.fixture(scope="session")
def other_key() -> PortalKey:
    """Key for a different passphrase on the same desktop."""
    return derive_key("correct-horse-battery", DESKTOP_ID)


@pytest.fixture
def fast_deriver() -> Pbkdf2KeyDeriver:
    """Low iteration deriver for tests that derive many keys."""
    return Pbkdf2KeyDeriver(iterations=1000)


@pytest.fixture
def key_cache() -> KeyCache:
    return KeyCache()


@pytest.fixture
def sample_payload() -> dict:
    """
    Provide a sample terminal payload.

    Returns:
        dict: Payload with nested values and non-ASCII text
    """
    return {
        "terminalId": "term-1",
        "data": "ls -la\r\n",
        "size": {"cols": 120, "rows": 40},
        "flags": [True, False, None],
        "label": "café ✓",
    }


# Pytest marks
def pytest_configure(config):
    """
    Configure pytest markers.

    Args:
        config: Pytest configuration object
    """
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# Test collection hooks
def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to add markers based on test location.

    Args:
        config: Pytest configuration
        items: List of collected test items
    """
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
