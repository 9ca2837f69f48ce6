"""
collabhub/auth_context.py

Session primitives for FastAPI dependency injection.

Contains:
- create_access_token / verify_token: HS256 JWT sessions (sub = user id)
- AuthContext: the authenticated caller, resolved from the users table
- require_auth_context: bearer token -> AuthContext, used by every protected route

This module MUST NOT import collabhub.main to avoid circular dependencies.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from collabhub.config import ACCESS_TOKEN_MINUTES, ALGORITHM, IS_DEV, SECRET_KEY
from collabhub.db import get_db_connection
from collabhub.users import UserStore

security = HTTPBearer()


# ---------------------------------------------------------
# JWT
# ---------------------------------------------------------
def create_access_token(user_id: int, email: str) -> str:
    now = datetime.utcnow()
    payload = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": now + timedelta(minutes=ACCESS_TOKEN_MINUTES),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> dict:
    """
    Decode a session token issued by create_access_token.

    Raises:
        HTTPException(401): Expired, tampered with, or not signed by us
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def create_oauth_state(user_id: int, minutes: int = 10) -> str:
    """Signed state for the calendar OAuth round trip (Google calls back without our bearer)."""
    now = datetime.utcnow()
    payload = {"sub": str(user_id), "purpose": "calendar", "iat": now, "exp": now + timedelta(minutes=minutes)}
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def verify_oauth_state(state: str) -> Optional[int]:
    """User id carried by a valid state, or None."""
    try:
        payload = jwt.decode(state, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.InvalidTokenError:
        return None
    sub = str(payload.get("sub", ""))
    if payload.get("purpose") != "calendar" or not sub.isdigit():
        return None
    return int(sub)


# ---------------------------------------------------------
# AuthContext
# ---------------------------------------------------------
class AuthContext(BaseModel):
    """
    The authenticated caller. user_id always comes from the verified token,
    never from request bodies or query params.
    """
    user_id: int
    email: str
    name: str


def require_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> AuthContext:
    """
    Resolve the bearer token to an AuthContext.

    Raises:
        HTTPException(401): If the token is invalid, expired, or the user no longer exists
    """
    payload = verify_token(credentials.credentials)
    sub = payload.get("sub")
    if not sub or not str(sub).isdigit() or "purpose" in payload:
        print("[AUTH] Missing user_id in token payload")
        raise HTTPException(status_code=401, detail="Invalid token payload")

    with get_db_connection() as conn:
        user = UserStore(conn).find_by_id(int(sub))

    if user is None:
        print(f"[AUTH] User not found: user_id={sub}")
        raise HTTPException(status_code=401, detail="User not found")

    ctx = AuthContext(user_id=user.id, email=user.email, name=user.name)
    if IS_DEV:
        print(f"[AUTH] Authenticated: user_id={ctx.user_id}")
    return ctx
