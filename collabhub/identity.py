"""
collabhub/identity.py

Google sign-up / sign-in.

The client sends the Google ID token it obtained; we verify it against
Google's tokeninfo endpoint, then create or look up the user and hand back
one of our own JWT sessions.
"""

from __future__ import annotations

import sqlite3
from typing import Callable, Dict, Optional

import requests
from pydantic import BaseModel

from collabhub.auth_context import create_access_token
from collabhub.config import GOOGLE_CLIENT_ID, GOOGLE_HTTP_TIMEOUT, IS_DEV
from collabhub.errors import Conflict, InvalidIdentityToken, NotFound
from collabhub.models import User
from collabhub.users import UserStore

GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")


class GoogleUserInfo(BaseModel):
    google_id: str
    email: str
    name: str
    picture: Optional[str] = None


def verify_google_id_token(id_token: str) -> GoogleUserInfo:
    """
    Verify a Google ID token and extract the profile.

    Raises:
        InvalidIdentityToken: Google rejects the token, the audience or issuer
            does not match, or email/name are missing
    """
    try:
        response = requests.get(
            GOOGLE_TOKENINFO_URL, params={"id_token": id_token}, timeout=GOOGLE_HTTP_TIMEOUT
        )
    except requests.RequestException as e:
        print(f"[AUTH] Google tokeninfo request failed: {e}")
        raise InvalidIdentityToken("Invalid Google token")

    if response.status_code != 200:
        print(f"[AUTH] Google rejected ID token: status={response.status_code}")
        raise InvalidIdentityToken("Invalid Google token")

    try:
        claims = response.json()
    except ValueError:
        print("[AUTH] Google tokeninfo returned invalid JSON")
        raise InvalidIdentityToken("Invalid Google token")
    if not isinstance(claims, dict):
        raise InvalidIdentityToken("Invalid Google token")
    if claims.get("iss") not in GOOGLE_ISSUERS:
        raise InvalidIdentityToken("Invalid Google token")
    if GOOGLE_CLIENT_ID and claims.get("aud") != GOOGLE_CLIENT_ID:
        print("[AUTH] ID token audience mismatch")
        raise InvalidIdentityToken("Invalid Google token")
    return user_info_from_claims(claims)


def user_info_from_claims(claims: Dict) -> GoogleUserInfo:
    if not claims.get("sub") or not claims.get("email") or not claims.get("name"):
        raise InvalidIdentityToken("Invalid Google token")
    return GoogleUserInfo(
        google_id=str(claims["sub"]),
        email=claims["email"],
        name=claims["name"],
        picture=claims.get("picture"),
    )


Verifier = Callable[[str], GoogleUserInfo]


def _auth_result(user: User) -> Dict:
    return {"token": create_access_token(user.id, user.email), "user": user}


def sign_up_with_google(conn: sqlite3.Connection, id_token: str, verifier: Verifier = verify_google_id_token) -> Dict:
    info = verifier(id_token)
    users = UserStore(conn)
    if users.find_by_google_id(info.google_id) or users.find_by_email(info.email):
        raise Conflict("User already exists, please sign in instead.")

    user = users.create(info.google_id, info.email, info.name, info.picture)
    print(f"[AUTH] User signed up: user_id={user.id}")
    return _auth_result(user)


def sign_in_with_google(conn: sqlite3.Connection, id_token: str, verifier: Verifier = verify_google_id_token) -> Dict:
    info = verifier(id_token)
    user = UserStore(conn).find_by_google_id(info.google_id)
    if user is None:
        raise NotFound("User not found, please sign up first.")

    if IS_DEV:
        print(f"[AUTH] User signed in: user_id={user.id}")
    return _auth_result(user)
