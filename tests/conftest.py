"""
Pytest configuration and shared fixtures.

Every test gets its own SQLite database and upload directory under tmp_path.
Settings are reloaded from environment variables before each app is built.
"""

import functools

import pytest
from fastapi.testclient import TestClient

from wegetchat.config import get_settings
from wegetchat.security import hash_password
from wegetchat.service import ChatService
from wegetchat.storage import SnapshotStore

TEST_SESSION_SECRET = "test-session-secret"

# Low work factor keeps registration fast in tests
fast_hash = functools.partial(hash_password, iterations=1000)


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'data' / 'wegetchat.db'}"


@pytest.fixture
def store(database_url):
    store = SnapshotStore(database_url)
    yield store
    store.close()


@pytest.fixture
def make_service(database_url):
    """Build services over the same database, as a process restart would."""
    services = []

    def factory(retention=200, **kwargs) -> ChatService:
        service = ChatService(
            SnapshotStore(database_url),
            notification_retention=retention,
            hasher=fast_hash,
            **kwargs,
        )
        services.append(service)
        return service

    yield factory
    for service in services:
        service.close()


@pytest.fixture
def service(make_service) -> ChatService:
    return make_service()


@pytest.fixture
def users(service):
    """Three registered users: alice, bob and carol (ids)."""
    return {
        name: service.register(name, "secret").id
        for name in ("alice", "bob", "carol")
    }


@pytest.fixture
def app_env(tmp_path, database_url, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", database_url)
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("SESSION_SECRET", TEST_SESSION_SECRET)
    monkeypatch.setenv("PASSWORD_HASH_ITERATIONS", "1000")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def client(app_env):
    """Create test client with a fresh database for each test."""
    from wegetchat.main import create_app

    with TestClient(create_app()) as test_client:
        yield test_client


@pytest.fixture
def make_client(app_env):
    """Clients sharing one app, each with its own session cookie."""
    from wegetchat.main import create_app

    app = create_app()

    # The outer client runs the lifespan once; the others share its service
    with TestClient(app):
        yield lambda: TestClient(app)
