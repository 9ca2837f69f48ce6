"""
collabhub/routes_calendar.py

Google Calendar connection endpoints.

Flow:
1. GET /calendar/oauth/authorize returns Google's consent URL with a signed
   state carrying the caller's user id.
2. Google redirects to GET /calendar/oauth/callback?code&state; the code is
   exchanged for a refresh token, which is stored and turns sync on.
3. enable/disable toggle sync without forgetting the token; disconnect
   revokes it at Google (best-effort) and forgets it.
"""

from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends, Query

from collabhub.auth_context import AuthContext, create_oauth_state, require_auth_context, verify_oauth_state
from collabhub.calendar_service import GoogleCalendarService
from collabhub.dependencies import get_calendar_provider, get_conn
from collabhub.errors import CalendarError, NotFound, ValidationFailed
from collabhub.schemas import CalendarStatusResponse
from collabhub.users import UserStore

router = APIRouter(
    prefix="/calendar",
    tags=["calendar"],
)


@router.get("/oauth/authorize")
def authorize(
    ctx: AuthContext = Depends(require_auth_context),
    provider: GoogleCalendarService = Depends(get_calendar_provider),
) -> dict:
    return {"auth_url": provider.generate_auth_url(create_oauth_state(ctx.user_id))}


@router.get("/oauth/callback")
def oauth_callback(
    code: str = Query(..., min_length=1),
    state: str = Query(..., min_length=1),
    conn: sqlite3.Connection = Depends(get_conn),
    provider: GoogleCalendarService = Depends(get_calendar_provider),
) -> dict:
    """
    Complete the OAuth round trip.

    Raises:
        ValidationFailed(400): State missing, expired or tampered with
        CalendarError(502): Google refused the code or returned no refresh token
    """
    user_id = verify_oauth_state(state)
    if user_id is None:
        raise ValidationFailed("Invalid OAuth state")

    tokens = provider.exchange_code(code)
    user = UserStore(conn).connect_calendar(user_id, tokens.refresh_token)
    if user is None:
        raise NotFound("User not found")

    print(f"[CALENDAR] Calendar connected for user {user_id}")
    return {"message": "Calendar connected successfully", "enabled": True}


@router.get("/status", response_model=CalendarStatusResponse)
def calendar_status(
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
    provider: GoogleCalendarService = Depends(get_calendar_provider),
) -> CalendarStatusResponse:
    user = UserStore(conn).find_by_id(ctx.user_id)
    return CalendarStatusResponse(
        connected=bool(user.calendar_refresh_token),
        enabled=user.calendar_enabled,
        configured=provider.is_configured,
    )


@router.post("/enable")
def enable_calendar(
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
    users = UserStore(conn)
    user = users.find_by_id(ctx.user_id)
    if not user.calendar_refresh_token:
        raise ValidationFailed("Calendar not connected. Please authorize first.")

    users.set_calendar_enabled(ctx.user_id, True)
    return {"message": "Calendar sync enabled", "enabled": True}


@router.post("/disable")
def disable_calendar(
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
    UserStore(conn).set_calendar_enabled(ctx.user_id, False)
    return {"message": "Calendar sync disabled", "enabled": False}


@router.post("/disconnect")
def disconnect_calendar(
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
    provider: GoogleCalendarService = Depends(get_calendar_provider),
) -> dict:
    users = UserStore(conn)
    user = users.find_by_id(ctx.user_id)
    if user.calendar_refresh_token:
        try:
            provider.revoke_access(user.calendar_refresh_token)
        except CalendarError as e:
            # The token is forgotten locally either way
            print(f"[CALENDAR] Revoke failed for user {ctx.user_id}: {e.message}")

    users.disconnect_calendar(ctx.user_id)
    return {"message": "Calendar disconnected successfully"}
