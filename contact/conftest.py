"""
Shared pytest fixtures for contact tests.
"""
import pytest
from rest_framework.test import APIClient

from contact.backends import MemoryIdentitySet
from contact.rate_limiting import CooldownStore


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now=1_700_000_000_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += int(seconds * 1000)


@pytest.fixture(autouse=True)
def clear_cooldowns():
    """Reset the in-memory cooldown sets before and after each test."""
    MemoryIdentitySet.reset_all()
    yield
    MemoryIdentitySet.reset_all()


@pytest.fixture
def api_client():
    """API client for making requests."""
    return APIClient()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def identity_set(settings):
    return MemoryIdentitySet(settings.CONTACT_COOLDOWN_KEY)


@pytest.fixture
def store(identity_set, clock):
    return CooldownStore(identity_set, window_seconds=7200, clock=clock)
