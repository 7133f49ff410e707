"""
Shared test fixtures and utilities.

This module provides common test infrastructure used across all test modules.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from modules.records.sync import reset_live_collection_sync
from modules.session.models import ProfileInput, Specialty
from modules.session.service import reset_session_manager
from providers.factory import reset_providers
from providers.memory import InMemoryDocumentStore, InMemoryIdentityProvider
from shared.config import Settings, get_settings
from shared.database import reset_client_cache

# Token secret for the in-memory identity provider (only for testing)
TEST_TOKEN_SECRET = "test-secret-key-for-testing-only"


class FakeClock:
    """Manually advanced UTC clock for providers that accept a clock."""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _profile_input(
    email: str = "ana@example.com",
    password: str = "secret123",
    name: Optional[str] = "Ana Torres",
    age: int = 20,
    specialty: Specialty = Specialty.SOFTWARE,
) -> ProfileInput:
    """Build a valid registration input."""
    return ProfileInput(email=email, password=password, name=name, age=age, specialty=specialty)


@pytest.fixture
def make_profile_input():
    """Factory for valid registration inputs."""
    return _profile_input


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset cached settings, clients and service singletons around each test."""
    get_settings.cache_clear()
    reset_client_cache()
    reset_providers()
    reset_session_manager()
    reset_live_collection_sync()
    yield
    get_settings.cache_clear()
    reset_client_cache()
    reset_providers()
    reset_session_manager()
    reset_live_collection_sync()


@pytest.fixture
def settings() -> Settings:
    """Settings for the in-memory backend."""
    return Settings(
        provider_backend="memory",
        memory_token_secret=TEST_TOKEN_SECRET,
        send_verification_on_register=True,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def identity() -> InMemoryIdentityProvider:
    """In-memory identity provider on the real clock, so fresh tokens are not expired."""
    return InMemoryIdentityProvider(token_secret=TEST_TOKEN_SECRET)


@pytest.fixture
def store(clock: FakeClock) -> InMemoryDocumentStore:
    """In-memory document store driven by the fake clock."""
    return InMemoryDocumentStore(clock=clock)
