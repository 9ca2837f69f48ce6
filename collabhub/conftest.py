"""
Shared pytest fixtures.

The API tests run against a temporary SQLite file selected through
DATABASE_PATH, which config.py reads at import time, so it is set here before
anything from collabhub is imported. Store-level tests use fresh in-memory
connections instead.
"""

import itertools
import os
import tempfile

# Create unique test database BEFORE importing the app
TEST_DB_PATH = os.path.join(tempfile.mkdtemp(prefix="collabhub-test-"), "test.db")
os.environ["DATABASE_PATH"] = TEST_DB_PATH
os.environ.setdefault("ENV", "dev")

import pytest
from fastapi.testclient import TestClient

from collabhub.calendar_service import CalendarEventData, CalendarTokens
from collabhub.db import connect
from collabhub.errors import CalendarError, InvalidIdentityToken
from collabhub.identity import GoogleUserInfo
from collabhub.membership import MembershipManager
from collabhub.migrate import apply_schema
from collabhub.users import UserStore

_ids = itertools.count(1)


class FakeCalendarProvider:
    """Records every provider call; tokens listed in failing raise CalendarError."""

    def __init__(self):
        self.calls = []
        self.failing = set()
        self.missing_events = set()
        self.is_configured = True
        self._next_event = itertools.count(1)

    def _record(self, method, refresh_token, event_id=None, event=None):
        self.calls.append({"method": method, "refresh_token": refresh_token, "event_id": event_id, "event": event})
        if refresh_token in self.failing:
            raise CalendarError(f"Failed to {method}")

    def calls_to(self, method):
        return [c for c in self.calls if c["method"] == method]

    def generate_auth_url(self, state=None):
        return f"https://accounts.example.test/auth?state={state}"

    def exchange_code(self, code):
        if code == "bad-code":
            raise CalendarError("Failed to get tokens from authorization code")
        return CalendarTokens(access_token="access", refresh_token=f"refresh-{code}")

    def create_event(self, refresh_token: str, event: CalendarEventData) -> str:
        self._record("create_event", refresh_token, event=event)
        return f"evt_{next(self._next_event)}"

    def update_event(self, refresh_token: str, event_id: str, event: CalendarEventData) -> None:
        self._record("update_event", refresh_token, event_id=event_id, event=event)

    def delete_event(self, refresh_token: str, event_id: str) -> None:
        self._record("delete_event", refresh_token, event_id=event_id)

    def verify_access(self, refresh_token: str) -> bool:
        return refresh_token not in self.failing

    def revoke_access(self, refresh_token: str) -> None:
        self._record("revoke_access", refresh_token)


def fake_identity_verifier(id_token: str) -> GoogleUserInfo:
    """Accepts tokens shaped 'google|<sub>|<email>|<name>'."""
    parts = id_token.split("|")
    if len(parts) != 4 or parts[0] != "google":
        raise InvalidIdentityToken("Invalid Google token")
    return GoogleUserInfo(google_id=parts[1], email=parts[2], name=parts[3])


# ---------------------------------------------------------
# Store-level fixtures (in-memory)
# ---------------------------------------------------------
@pytest.fixture
def conn():
    connection = connect(":memory:")
    apply_schema(connection)
    yield connection
    connection.close()


@pytest.fixture
def make_user(conn):
    users = UserStore(conn)

    def _make(name=None, email=None, calendar_token=None):
        n = next(_ids)
        user = users.create(
            google_id=f"google-{n}",
            email=email or f"user{n}@example.com",
            name=name or f"User {n}",
        )
        if calendar_token:
            user = users.connect_calendar(user.id, calendar_token)
        return user

    return _make


@pytest.fixture
def manager(conn):
    return MembershipManager(conn)


@pytest.fixture
def owner(make_user):
    return make_user(name="Owner")


@pytest.fixture
def project(manager, owner):
    return manager.create_project("Alpha", "First project", owner.id)


@pytest.fixture
def fake_calendar():
    return FakeCalendarProvider()


# ---------------------------------------------------------
# API fixtures (temporary database file)
# ---------------------------------------------------------
@pytest.fixture
def client(fake_calendar):
    from collabhub.dependencies import get_calendar_provider, get_identity_verifier
    from collabhub.main import app

    app.dependency_overrides[get_calendar_provider] = lambda: fake_calendar
    app.dependency_overrides[get_identity_verifier] = lambda: fake_identity_verifier
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def signup(client):
    """Sign a new user up and return {"id", "token", "headers", "email", "name"}."""

    def _signup(name=None):
        n = next(_ids)
        name = name or f"Api User {n}"
        email = f"api{n}@example.com"
        response = client.post("/auth/signup", json={"id_token": f"google|sub-{n}|{email}|{name}"})
        assert response.status_code == 201, response.text
        data = response.json()["data"]
        return {
            "id": data["user"]["id"],
            "token": data["token"],
            "headers": {"Authorization": f"Bearer {data['token']}"},
            "email": email,
            "name": name,
            "sub": f"sub-{n}",
        }

    return _signup


@pytest.fixture
def api_conn():
    """Direct connection to the API test database."""
    connection = connect(TEST_DB_PATH)
    yield connection
    connection.close()
