"""
Test configuration and fixtures for pytest.
"""
import pytest

from tests.support import create_database


@pytest.fixture
def connection_string(tmp_path):
    """A seeded SQLite database in a temporary directory."""
    return create_database(tmp_path / "test.db")
