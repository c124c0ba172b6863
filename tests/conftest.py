"""
Shared fixtures for the RADC test suite.
"""

from datetime import datetime, timedelta

import pytest

from radc.auth.database import IdentityStore
from radc.auth.models import IdentityRecord, Principal
from radc.auth.permissions import Role
from radc.auth.tokens import TokenVerifier
from radc.config import Settings


TEST_SECRET = "test-secret-key-with-enough-length-for-hs256"


class FakeClock:
    """Settable clock for stores and administrators."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 15, 10, 30))


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_path=tmp_path / "identities.db",
        token_secret=TEST_SECRET,
        log_level="DEBUG",
    )


@pytest.fixture
def store(tmp_path, clock):
    return IdentityStore(tmp_path / "identities.db", clock=clock)


@pytest.fixture
def verifier():
    return TokenVerifier(TEST_SECRET)


@pytest.fixture
def make_principal():
    def _make(uid="uid-0000000000000000000001", email=None, name=None, verified=True):
        return Principal(
            uid=uid,
            email=email or f"{uid}@example.org",
            display_name=name or f"User {uid[-4:]}",
            email_verified=verified,
        )
    return _make


@pytest.fixture
def make_identity():
    def _make(role=Role.VISITOR, permissions=(), uid="uid-identity"):
        now = datetime(2024, 1, 1)
        return IdentityRecord(
            uid=uid,
            display_name="Test User",
            email="test@example.org",
            registered_at=now,
            last_access_at=now,
            role=role,
            permissions=frozenset(permissions),
        )
    return _make
