# Pytest configuration for backend API tests.
# Forces a local SQLite DB, disables Redis and the expiry sweeper thread, wires a JWT secret,
# and pins the request clock so date-based rules are deterministic.
import os
from datetime import datetime, timezone
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

# Test-time environment: local SQLite DB, Redis disabled, predictable JWT secret, no sweeper thread
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("FLATRENT_JWT_SECRET", "test-secret")
os.environ.setdefault("EXPIRY_SWEEP_SECONDS", "0")
os.environ.pop("SMTP_HOST", None)

import sys
# Ensure the repo root is on sys.path so 'flatrent' resolves when running pytest from anywhere
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from flatrent.main import app  # noqa: E402
from flatrent.clock import FixedClock, get_clock  # noqa: E402
from flatrent.db import Base, engine  # noqa: E402

# "Today" for every test unless a test moves the clock
TEST_NOW = datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _clean_db() -> Iterator[None]:
    """
    Function-level isolation: drop and recreate schema before each test.
    """
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clock() -> Iterator[FixedClock]:
    """
    Request clock pinned to TEST_NOW; tests call clock.set()/advance() to simulate time passing.
    """
    fixed = FixedClock(TEST_NOW)
    app.dependency_overrides[get_clock] = lambda: fixed
    yield fixed
    app.dependency_overrides.pop(get_clock, None)


@pytest.fixture()
def client() -> Iterator[TestClient]:
    """
    FastAPI TestClient bound to the application for HTTP-level tests.
    """
    with TestClient(app) as c:
        yield c
