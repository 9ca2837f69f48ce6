"""
collabhub/routes_auth.py

Google sign-up / sign-in endpoints.

Both return {"message", "data": {"token", "user"}}; the token is the bearer
credential for every other endpoint.
"""

from __future__ import annotations

import sqlite3
from typing import Callable

from fastapi import APIRouter, Depends

from collabhub.dependencies import get_conn, get_identity_verifier
from collabhub.identity import sign_in_with_google, sign_up_with_google
from collabhub.schemas import AuthData, AuthRequest, AuthResponse, UserResponse

router = APIRouter(
    prefix="/auth",
    tags=["auth"],
)


def _envelope(message: str, result: dict) -> AuthResponse:
    return AuthResponse(
        message=message,
        data=AuthData(token=result["token"], user=UserResponse.from_user(result["user"])),
    )


@router.post("/signup", response_model=AuthResponse, status_code=201)
def signup(
    request: AuthRequest,
    conn: sqlite3.Connection = Depends(get_conn),
    verifier: Callable = Depends(get_identity_verifier),
) -> AuthResponse:
    """
    Create an account from a Google ID token.

    Raises:
        InvalidIdentityToken(401): Google rejected the token
        Conflict(409): An account already exists for this Google user
    """
    result = sign_up_with_google(conn, request.id_token, verifier)
    return _envelope("User signed up successfully", result)


@router.post("/signin", response_model=AuthResponse)
def signin(
    request: AuthRequest,
    conn: sqlite3.Connection = Depends(get_conn),
    verifier: Callable = Depends(get_identity_verifier),
) -> AuthResponse:
    """
    Start a session for an existing account.

    Raises:
        InvalidIdentityToken(401): Google rejected the token
        NotFound(404): No account for this Google user
    """
    result = sign_in_with_google(conn, request.id_token, verifier)
    return _envelope("User signed in successfully", result)
