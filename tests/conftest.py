"""
Pytest configuration and shared fixtures for grantshield tests.

This module provides:
- FakeClock for deterministic windows and cutoffs
- In-memory SecurityDB and a fully wired SecurityPipeline
- A Flask app/test client with admin, user and service tokens
"""

import os

# Keep test runs from writing log files under the home directory
os.environ.setdefault("GRANTSHIELD_LOG_FILES", "0")

from datetime import datetime, timedelta, timezone

import pytest
from faker import Faker

from grantshield.api import create_app
from grantshield.pipeline import SecurityPipeline
from grantshield.storage import MEMORY, SecurityDB
from grantshield.utils.settings import Settings

fake = Faker()

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

ADMIN_TOKEN = "admin-token"
USER_TOKEN = "user-token"
SERVICE_TOKEN = "idp-token"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta) -> datetime:
        self._now += timedelta(**delta)
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Clock pinned at T0."""
    return FakeClock()


@pytest.fixture
def db():
    """Fresh in-memory database, closed after the test."""
    database = SecurityDB(MEMORY)
    yield database
    database.close()


@pytest.fixture
def settings() -> Settings:
    """Default settings against an in-memory database with test tokens."""
    return Settings(
        db_path=MEMORY,
        sweep_interval_hours=0,
        api_tokens={
            ADMIN_TOKEN: {"user_id": "admin-1", "role": "admin"},
            USER_TOKEN: {"user_id": "user-1", "role": "grantee"},
            SERVICE_TOKEN: {"user_id": "idp", "role": "service"},
        },
    )


@pytest.fixture
def pipeline(settings, db, clock) -> SecurityPipeline:
    """Pipeline wired to the shared in-memory db and fake clock."""
    return SecurityPipeline(settings, db=db, clock=clock)


# =============================================================================
# Flask fixtures
# =============================================================================


@pytest.fixture
def app(pipeline):
    """Flask app around the test pipeline."""
    application = create_app(pipeline)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def user_headers() -> dict:
    return {"Authorization": f"Bearer {USER_TOKEN}"}


@pytest.fixture
def service_headers() -> dict:
    return {"Authorization": f"Bearer {SERVICE_TOKEN}"}


@pytest.fixture
def user_id() -> str:
    return fake.user_name()


@pytest.fixture
def ip() -> str:
    return fake.ipv4()
