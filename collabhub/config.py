# collabhub/config.py
# Environment-aware configuration for the CollabHub backend

import os
import string
from typing import Literal

# Environment detection
ENV: Literal["dev", "staging", "prod"] = os.environ.get("ENV", "dev")  # type: ignore
IS_DEV = (ENV == "dev")
IS_STAGING = (ENV == "staging")
IS_PROD = (ENV == "prod")

# JWT session configuration
SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_MINUTES = int(os.environ.get("ACCESS_TOKEN_MINUTES", str(60 * 24)))

# Database configuration (relative paths resolve next to this package)
DATABASE_PATH = os.environ.get("DATABASE_PATH", "collabhub.db")

# Google identity + calendar
GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET", "")
GOOGLE_CALENDAR_REDIRECT_URI = os.environ.get(
    "GOOGLE_CALENDAR_REDIRECT_URI", "http://localhost:8000/calendar/oauth/callback"
)
GOOGLE_HTTP_TIMEOUT = float(os.environ.get("GOOGLE_HTTP_TIMEOUT", "10"))

# Refresh tokens with this prefix never reach Google (test doubles)
CALENDAR_TEST_TOKEN_PREFIX = "test_token_"
CALENDAR_TEST_EVENT_PREFIX = "test_event_"

# Invitation codes
INVITATION_CODE_LENGTH = 8
INVITATION_CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 10
INVITATION_EXPIRY_DAYS = int(os.environ.get("INVITATION_EXPIRY_DAYS", "7"))

# Calendar outbox
CALENDAR_DRAIN_BATCH = int(os.environ.get("CALENDAR_DRAIN_BATCH", "50"))

# CORS origins (expand for staging/prod)
CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

if IS_STAGING or IS_PROD:
    extra_origins = os.environ.get("CORS_ORIGINS", "")
    if extra_origins:
        CORS_ORIGINS.extend(o.strip() for o in extra_origins.split(",") if o.strip())

print(f"[CONFIG] Environment: {ENV}")
print(f"[CONFIG] Database: SQLite ({DATABASE_PATH})")
print(f"[CONFIG] Access token: {ACCESS_TOKEN_MINUTES} minutes")
print(f"[CONFIG] Google calendar configured: {bool(GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET)}")
