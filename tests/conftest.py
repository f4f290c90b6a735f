"""Shared fixtures for all tests."""

import pytest

from ordercore.application.dispatcher import reset_dispatcher
from ordercore.application.repositories import reset_repositories
from ordercore.infrastructure.credentials import reset_token_cache


@pytest.fixture(autouse=True)
def reset_state():
    """Reset process-wide singletons before and after each test."""
    reset_repositories()
    reset_dispatcher()
    reset_token_cache()
    yield
    reset_repositories()
    reset_dispatcher()
    reset_token_cache()
