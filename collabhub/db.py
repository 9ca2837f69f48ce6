# collabhub/db.py
# SQLite access layer shared by the stores and the API

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path as FsPath
from typing import Any, Dict, Generator, Optional

from collabhub.config import DATABASE_PATH

# Fixed-width timestamp format so stored values compare correctly as text
DB_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def db_path() -> str:
    """Resolve DATABASE_PATH (relative paths live next to this package)."""
    return str(FsPath(__file__).resolve().parent / DATABASE_PATH)


def connect(path: Optional[str] = None) -> sqlite3.Connection:
    """
    Open a SQLite connection with Row factory and foreign keys enabled.

    Args:
        path: Database file (or ":memory:"). Defaults to the configured path.
    """
    conn = sqlite3.connect(path or db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def get_db() -> sqlite3.Connection:
    """Create and return a connection for a single request."""
    return connect()


@contextmanager
def get_db_connection() -> Generator[sqlite3.Connection, None, None]:
    """Context manager for database connections (always closed)."""
    conn = get_db()
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
    """Commit on success, roll back on any exception."""
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


# ---------------------------------------------------------
# Time + row helpers
# ---------------------------------------------------------
def utcnow() -> datetime:
    return datetime.utcnow()


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime(DB_TIME_FORMAT)


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, DB_TIME_FORMAT)


def now_db() -> str:
    return to_db_time(utcnow())


def row_to_dict(row: Optional[sqlite3.Row]) -> Dict[str, Any]:
    """
    Safely convert a sqlite3.Row to dict.

    Returns {} for None so callers can use .get() on missing rows.
    """
    if row is None:
        return {}
    return dict(row)
