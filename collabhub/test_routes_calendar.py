"""
collabhub/test_routes_calendar.py

Calendar connection endpoints: OAuth round trip, status, enable/disable and
disconnect.

Run:
    pytest collabhub/test_routes_calendar.py -v
"""

from urllib.parse import parse_qs, urlparse

import pytest

from collabhub.auth_context import create_oauth_state, verify_oauth_state


@pytest.fixture
def user(signup):
    return signup()


def _status(client, user):
    return client.get("/calendar/status", headers=user["headers"]).json()


def _connect(client, user, code="abc"):
    state = create_oauth_state(user["id"])
    return client.get("/calendar/oauth/callback", params={"code": code, "state": state})


class TestOAuth:
    def test_authorize_returns_url_with_signed_state(self, client, user):
        response = client.get("/calendar/oauth/authorize", headers=user["headers"])

        assert response.status_code == 200
        state = parse_qs(urlparse(response.json()["auth_url"]).query)["state"][0]
        assert verify_oauth_state(state) == user["id"]

    def test_authorize_requires_auth(self, client):
        assert client.get("/calendar/oauth/authorize").status_code in (401, 403)

    def test_callback_connects_and_enables(self, client, user, api_conn):
        response = _connect(client, user)

        assert response.status_code == 200
        assert response.json() == {"message": "Calendar connected successfully", "enabled": True}
        row = api_conn.execute(
            "SELECT calendar_refresh_token, calendar_enabled FROM users WHERE id = ?", (user["id"],)
        ).fetchone()
        assert row["calendar_refresh_token"] == "refresh-abc"
        assert row["calendar_enabled"] == 1

    def test_callback_rejects_bad_state(self, client):
        response = client.get("/calendar/oauth/callback", params={"code": "abc", "state": "forged"})
        assert response.status_code == 400
        assert response.json() == {"message": "Invalid OAuth state"}

    def test_session_token_is_not_a_state(self, client, user):
        response = client.get("/calendar/oauth/callback", params={"code": "abc", "state": user["token"]})
        assert response.status_code == 400

    def test_callback_provider_failure(self, client, user):
        response = _connect(client, user, code="bad-code")
        assert response.status_code == 502
        assert response.json() == {"message": "Failed to get tokens from authorization code"}
        assert _status(client, user)["connected"] is False


class TestSettings:
    def test_status_before_connecting(self, client, user):
        assert _status(client, user) == {"connected": False, "enabled": False, "configured": True}

    def test_enable_requires_connection(self, client, user):
        response = client.post("/calendar/enable", headers=user["headers"])
        assert response.status_code == 400
        assert response.json() == {"message": "Calendar not connected. Please authorize first."}

    def test_disable_then_enable(self, client, user):
        _connect(client, user)

        response = client.post("/calendar/disable", headers=user["headers"])
        assert response.json() == {"message": "Calendar sync disabled", "enabled": False}
        assert _status(client, user) == {"connected": True, "enabled": False, "configured": True}

        response = client.post("/calendar/enable", headers=user["headers"])
        assert response.json() == {"message": "Calendar sync enabled", "enabled": True}
        assert _status(client, user)["enabled"] is True

    def test_disconnect_revokes_and_forgets(self, client, user, fake_calendar):
        _connect(client, user)

        response = client.post("/calendar/disconnect", headers=user["headers"])

        assert response.status_code == 200
        assert response.json() == {"message": "Calendar disconnected successfully"}
        assert [c["refresh_token"] for c in fake_calendar.calls_to("revoke_access")] == ["refresh-abc"]
        assert _status(client, user) == {"connected": False, "enabled": False, "configured": True}

    def test_disconnect_survives_revoke_failure(self, client, user, fake_calendar):
        _connect(client, user)
        fake_calendar.failing.add("refresh-abc")

        response = client.post("/calendar/disconnect", headers=user["headers"])

        assert response.status_code == 200
        assert _status(client, user)["connected"] is False
