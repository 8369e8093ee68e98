"""
Pytest configuration and shared fixtures.

Environment variables default to a local SQLite file; settings are reloaded
with them before any app import.
"""

import os
import threading

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///./samvad_test.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Clear settings cache before any app imports to ensure test env vars are used
from samvad.config import get_settings  # noqa: E402
get_settings.cache_clear()

from fastapi.testclient import TestClient  # noqa: E402

from samvad.main import app  # noqa: E402
from samvad.storage import Base, SessionLocal, engine  # noqa: E402


def auth(user_id: int) -> dict:
    """Headers identifying the caller."""
    return {"X-User-Id": str(user_id)}


def register(client, name: str, email: str = None) -> int:
    """Helper to create a user via the API and return its id."""
    response = client.post(
        "/api/users",
        json={"name": name, "email": email or f"{name.lower()}@example.com"},
    )
    assert response.status_code == 201
    return response.json()["data"]["id"]


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    # Cleanup - drop all tables after test
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def people(client):
    """Three registered users: alice, bob and carol."""
    return {
        "alice": register(client, "Alice"),
        "bob": register(client, "Bob"),
        "carol": register(client, "Carol"),
    }


@pytest.fixture
def db(client):
    """Session for service-level tests, on the same fresh tables."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def run_concurrently(count: int, work) -> list:
    """
    Run work(session, index) on `count` threads released together, each with its
    own session. Returns the results in thread order; an exception raised
    by any thread is re-raised here.
    """
    barrier = threading.Barrier(count)
    results = [None] * count
    errors = []

    def target(index: int):
        session = SessionLocal()
        try:
            barrier.wait()
            results[index] = work(session, index)
        except Exception as exc:
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=target, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    if errors:
        raise errors[0]
    return results
