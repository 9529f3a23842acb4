"""
Pytest configuration and fixtures for djstar tests.
"""

import pytest

from djstar.config import get_config

from .helpers import new_session


@pytest.fixture
def session():
    """A session shared by several requests of one test."""
    return new_session()


@pytest.fixture(autouse=True)
def reset_config():
    """Undo configuration changes made by a test."""
    yield
    get_config().reset()
