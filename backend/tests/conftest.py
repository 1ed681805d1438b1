from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from portal.config import Settings
from portal.database import Database
from portal.main import create_app


class FakeClock:
    """Wall clock the tests move by hand."""

    def __init__(self, start: float | None = None) -> None:
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class RecordingIdentity:
    def __init__(self, fail: bool = False) -> None:
        self.reasons: list[str] = []
        self.fail = fail

    def invalidate_session(self, reason: str) -> None:
        self.reasons.append(reason)
        if self.fail:
            raise RuntimeError("identity store unavailable")


class RecordingNavigator:
    def __init__(self, fail: bool = False) -> None:
        self.redirects: list[str] = []
        self.fail = fail

    def redirect(self, path: str) -> None:
        self.redirects.append(path)
        if self.fail:
            raise RuntimeError("navigation failed")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def identity_store() -> RecordingIdentity:
    return RecordingIdentity()


@pytest.fixture
def navigator() -> RecordingNavigator:
    return RecordingNavigator()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        # file db: background session jobs write from their own thread
        database_url=f"sqlite:///{tmp_path / 'portal.db'}",
        secret_key="test-secret-key",
        # countdown wakes rarely; tests drive ticks through the API
        session_tick_seconds=3600,
        billing_enabled=True,
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret="whsec_test_123",
        app_base_url="http://testserver",
        email_enabled=False,
    )


@pytest.fixture
def database(settings: Settings):
    db = Database(settings.database_url)
    db.init()
    yield db
    db.dispose()


@pytest.fixture
def app(settings: Settings, database: Database, clock: FakeClock):
    return create_app(settings=settings, database=database, clock=clock)


@pytest.fixture
def client(app) -> TestClient:
    with TestClient(app) as c:
        yield c


def _signup(client: TestClient, email: str = "member@example.com", password: str = "secret123", name: str = "Member"):
    resp = client.post("/auth/signup", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 201, resp.text
    return resp.json()


def _login(client: TestClient, email: str = "member@example.com", password: str = "secret123") -> dict:
    resp = client.post("/auth/login", data={"username": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.fixture
def member(client: TestClient) -> dict:
    """Signed-up and logged-in user: {"user": ..., "token": ..., "headers": ...}."""
    user = _signup(client)
    body = _login(client)
    return {
        "user": user,
        "token": body["access_token"],
        "session": body["session"],
        "headers": {"Authorization": f"Bearer {body['access_token']}"},
    }


@pytest.fixture
def signup_user(client: TestClient):
    return lambda **kw: _signup(client, **kw)


@pytest.fixture
def login_user(client: TestClient):
    return lambda **kw: _login(client, **kw)
