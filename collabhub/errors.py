"""
collabhub/errors.py

Error taxonomy shared by the stores, the membership manager and the API.

- Lookups never raise for "not found"; they return None or [].
- NotFound is only raised when an operation needs its target to exist.
- StorageError carries a fixed "Failed to <operation>" message; the original
  exception is printed where it is caught, never returned to the caller.
- CalendarError never leaves the calendar sync bridge.
"""

from __future__ import annotations


class CollabHubError(Exception):
    """Base class; status_code is used by the API exception handler."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(CollabHubError):
    status_code = 400


class NotFound(CollabHubError):
    status_code = 404


class Forbidden(CollabHubError):
    status_code = 403


class Conflict(CollabHubError):
    status_code = 409


class StorageError(CollabHubError):
    status_code = 500


class CodeGenerationError(CollabHubError):
    status_code = 500


class InvalidIdentityToken(CollabHubError):
    status_code = 401


class CalendarError(CollabHubError):
    status_code = 502
