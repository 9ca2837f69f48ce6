"""
collabhub/calendar_service.py

Google Calendar provider over the plain REST endpoints (OAuth2 + Calendar v3).

Every call is made with a user's long-lived refresh token: an access token is
obtained per call from the token endpoint, then the Calendar API is hit with
it. Tasks become all-day events on the user's primary calendar.

Test doubles:
- refresh tokens starting with "test_token_" never touch the network;
  create_event then returns "test_event_<millis>".
- event ids starting with "test_event_" also short-circuit update/delete.

Errors:
- Every failure raises CalendarError("Failed to <operation>"), with the
  provider detail printed under [CALENDAR].
- delete_event treats 404/410 from Google as already deleted.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import quote, urlencode

import requests
from pydantic import BaseModel, Field

from collabhub.config import (
    CALENDAR_TEST_EVENT_PREFIX,
    CALENDAR_TEST_TOKEN_PREFIX,
    GOOGLE_CALENDAR_REDIRECT_URI,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_HTTP_TIMEOUT,
    IS_DEV,
)
from collabhub.errors import CalendarError

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"

CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
]


class Reminder(BaseModel):
    method: Literal["email", "popup"]
    minutes: int = Field(..., ge=0)


DEFAULT_REMINDERS = [
    Reminder(method="email", minutes=24 * 60),
    Reminder(method="popup", minutes=60),
]


class CalendarEventData(BaseModel):
    """What the sync bridge asks the provider to put in a calendar."""
    summary: str
    description: str = ""
    start: datetime
    end: Optional[datetime] = None
    reminders: Optional[List[Reminder]] = None


class CalendarTokens(BaseModel):
    access_token: str
    refresh_token: str
    expiry_date: Optional[datetime] = None


def format_date_only(value: datetime) -> str:
    """YYYY-MM-DD of the UTC calendar day (naive values are already UTC)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d")


def build_event_body(event: CalendarEventData) -> Dict[str, Any]:
    """
    Google all-day event payload.

    The end date is exclusive, so it is the day after the (end or start) date.
    """
    end = event.end or event.start
    reminders = event.reminders if event.reminders is not None else DEFAULT_REMINDERS
    return {
        "summary": event.summary,
        "description": event.description or "",
        "start": {"date": format_date_only(event.start)},
        "end": {"date": format_date_only(end + timedelta(days=1))},
        "reminders": {
            "useDefault": False,
            "overrides": [r.dict() for r in reminders],
        },
    }


def is_test_token(refresh_token: Optional[str]) -> bool:
    return bool(refresh_token) and refresh_token.startswith(CALENDAR_TEST_TOKEN_PREFIX)


def is_test_event(event_id: Optional[str]) -> bool:
    return bool(event_id) and event_id.startswith(CALENDAR_TEST_EVENT_PREFIX)


class GoogleCalendarService:
    def __init__(
        self,
        client_id: str = GOOGLE_CLIENT_ID,
        client_secret: str = GOOGLE_CLIENT_SECRET,
        redirect_uri: str = GOOGLE_CALENDAR_REDIRECT_URI,
        session: Optional[requests.Session] = None,
        timeout: float = GOOGLE_HTTP_TIMEOUT,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    # ---------------------------------------------------------
    # OAuth
    # ---------------------------------------------------------
    def generate_auth_url(self, state: Optional[str] = None) -> str:
        """Consent URL; prompt=consent forces Google to return a refresh token."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(CALENDAR_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> CalendarTokens:
        payload = self._post_token(
            {
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
            "get tokens from authorization code",
        )
        if not payload.get("refresh_token"):
            print("[CALENDAR] No refresh token received from Google")
            raise CalendarError("Failed to get tokens from authorization code")

        expires_in = payload.get("expires_in")
        return CalendarTokens(
            access_token=payload.get("access_token", ""),
            refresh_token=payload["refresh_token"],
            expiry_date=datetime.utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None,
        )

    def _post_token(self, data: Dict[str, str], operation: str) -> Dict[str, Any]:
        try:
            response = self.session.post(GOOGLE_TOKEN_URL, data=data, timeout=self.timeout)
        except requests.RequestException as e:
            print(f"[CALENDAR] Token request failed ({operation}): {e}")
            raise CalendarError(f"Failed to {operation}")
        if not response.ok:
            print(f"[CALENDAR] Token endpoint returned {response.status_code} ({operation})")
            raise CalendarError(f"Failed to {operation}")
        try:
            return response.json()
        except ValueError:
            print(f"[CALENDAR] Token endpoint returned invalid JSON ({operation})")
            raise CalendarError(f"Failed to {operation}")

    def _access_token(self, refresh_token: str, operation: str) -> str:
        payload = self._post_token(
            {
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
            },
            operation,
        )
        access_token = payload.get("access_token")
        if not access_token:
            print(f"[CALENDAR] Token response missing access_token ({operation})")
            raise CalendarError(f"Failed to {operation}")
        return access_token

    def _call(
        self,
        method: str,
        path: str,
        refresh_token: str,
        operation: str,
        json: Optional[Dict[str, Any]] = None,
        allow_status: tuple = (),
    ) -> requests.Response:
        access_token = self._access_token(refresh_token, operation)
        try:
            response = self.session.request(
                method,
                f"{GOOGLE_CALENDAR_API}{path}",
                headers={"Authorization": f"Bearer {access_token}"},
                json=json,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            print(f"[CALENDAR] Request failed ({operation}): {e}")
            raise CalendarError(f"Failed to {operation}")

        if response.status_code in allow_status:
            return response
        if not response.ok:
            print(f"[CALENDAR] Google returned {response.status_code} ({operation})")
            raise CalendarError(f"Failed to {operation}")
        return response

    # ---------------------------------------------------------
    # Events
    # ---------------------------------------------------------
    def create_event(self, refresh_token: str, event: CalendarEventData) -> str:
        if is_test_token(refresh_token):
            if IS_DEV:
                print("[CALENDAR] TEST MODE: skipping Google Calendar create")
            return f"{CALENDAR_TEST_EVENT_PREFIX}{int(time.time() * 1000)}"

        response = self._call(
            "POST", "/calendars/primary/events", refresh_token, "create calendar event",
            json=build_event_body(event),
        )
        event_id = response.json().get("id")
        if not event_id:
            raise CalendarError("Failed to create calendar event")
        print(f"[CALENDAR] Calendar event created: {event_id}")
        return event_id

    def update_event(self, refresh_token: str, event_id: str, event: CalendarEventData) -> None:
        if is_test_token(refresh_token) or is_test_event(event_id):
            if IS_DEV:
                print("[CALENDAR] TEST MODE: skipping Google Calendar update")
            return

        self._call(
            "PUT", f"/calendars/primary/events/{quote(event_id, safe='')}", refresh_token,
            "update calendar event", json=build_event_body(event),
        )
        print(f"[CALENDAR] Calendar event updated: {event_id}")

    def delete_event(self, refresh_token: str, event_id: str) -> None:
        if is_test_token(refresh_token) or is_test_event(event_id):
            if IS_DEV:
                print("[CALENDAR] TEST MODE: skipping Google Calendar delete")
            return

        response = self._call(
            "DELETE", f"/calendars/primary/events/{quote(event_id, safe='')}", refresh_token,
            "delete calendar event", allow_status=(404, 410),
        )
        if response.status_code in (404, 410):
            print(f"[CALENDAR] Event {event_id} not found, may have been already deleted")
            return
        print(f"[CALENDAR] Calendar event deleted: {event_id}")

    def verify_access(self, refresh_token: str) -> bool:
        if is_test_token(refresh_token):
            return True
        try:
            self._call("GET", "/users/me/calendarList?maxResults=1", refresh_token, "verify calendar access")
        except CalendarError as e:
            print(f"[CALENDAR] Error verifying calendar access: {e.message}")
            return False
        return True

    def revoke_access(self, refresh_token: str) -> None:
        if is_test_token(refresh_token):
            return
        try:
            response = self.session.post(
                GOOGLE_REVOKE_URL, params={"token": refresh_token}, timeout=self.timeout
            )
        except requests.RequestException as e:
            print(f"[CALENDAR] Error revoking calendar access: {e}")
            raise CalendarError("Failed to revoke calendar access")
        if not response.ok:
            print(f"[CALENDAR] Revoke endpoint returned {response.status_code}")
            raise CalendarError("Failed to revoke calendar access")
        print("[CALENDAR] Calendar access revoked")
