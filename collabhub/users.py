"""
collabhub/users.py

User persistence: Google identity, calendar settings, and the owned/member
project back-references (derived from projects and project_members).
"""

from __future__ import annotations

import sqlite3
from typing import Dict, List, Optional

from collabhub.db import from_db_time, now_db
from collabhub.errors import Conflict, StorageError
from collabhub.models import User


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        google_id=row["google_id"],
        email=row["email"],
        name=row["name"],
        profile_picture=row["profile_picture"],
        bio=row["bio"],
        calendar_enabled=bool(row["calendar_enabled"]),
        calendar_refresh_token=row["calendar_refresh_token"],
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
    )


class UserStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def create(
        self,
        google_id: str,
        email: str,
        name: str,
        profile_picture: Optional[str] = None,
    ) -> User:
        now = now_db()
        try:
            cur = self.conn.execute(
                """
                INSERT INTO users (google_id, email, name, profile_picture, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (google_id, email.strip().lower(), name.strip(), profile_picture, now, now),
            )
            self.conn.commit()
        except sqlite3.IntegrityError as e:
            print(f"[USERS] IntegrityError creating user: {e}")
            raise Conflict("User already exists")
        except sqlite3.Error as e:
            print(f"[USERS] Error creating user: {e}")
            raise StorageError("Failed to create user")
        return self.find_by_id(cur.lastrowid)

    def _find_one(self, where: str, params: tuple) -> Optional[User]:
        try:
            row = self.conn.execute(f"SELECT * FROM users WHERE {where}", params).fetchone()
        except sqlite3.Error as e:
            print(f"[USERS] Error finding user ({where}): {e}")
            raise StorageError("Failed to find user")
        return _row_to_user(row) if row else None

    def find_by_id(self, user_id: int) -> Optional[User]:
        return self._find_one("id = ?", (user_id,))

    def find_by_google_id(self, google_id: str) -> Optional[User]:
        return self._find_one("google_id = ?", (google_id,))

    def find_by_email(self, email: str) -> Optional[User]:
        return self._find_one("email = ?", (email.strip().lower(),))

    def find_by_name(self, name: str) -> List[User]:
        """All users whose display name matches exactly, ignoring case."""
        try:
            rows = self.conn.execute(
                "SELECT * FROM users WHERE name = ? COLLATE NOCASE ORDER BY id",
                (name.strip(),),
            ).fetchall()
        except sqlite3.Error as e:
            print(f"[USERS] Error finding user by name: {e}")
            raise StorageError("Failed to find user by name")
        return [_row_to_user(r) for r in rows]

    def update_profile(
        self,
        user_id: int,
        name: Optional[str] = None,
        bio: Optional[str] = None,
        profile_picture: Optional[str] = None,
    ) -> Optional[User]:
        fields = []
        params: list = []
        if name is not None:
            fields.append("name = ?")
            params.append(name.strip())
        if bio is not None:
            fields.append("bio = ?")
            params.append(bio)
        if profile_picture is not None:
            fields.append("profile_picture = ?")
            params.append(profile_picture)
        return self._update(user_id, fields, params, "update user")

    # ---------------------------------------------------------
    # Calendar settings
    # ---------------------------------------------------------
    def connect_calendar(self, user_id: int, refresh_token: str) -> Optional[User]:
        """Store a refresh token and turn sync on."""
        return self._update(
            user_id,
            ["calendar_refresh_token = ?", "calendar_enabled = 1"],
            [refresh_token],
            "connect calendar",
        )

    def set_calendar_enabled(self, user_id: int, enabled: bool) -> Optional[User]:
        return self._update(user_id, ["calendar_enabled = ?"], [1 if enabled else 0], "update calendar settings")

    def disconnect_calendar(self, user_id: int) -> Optional[User]:
        return self._update(
            user_id,
            ["calendar_refresh_token = NULL", "calendar_enabled = 0"],
            [],
            "disconnect calendar",
        )

    def _update(self, user_id: int, fields: List[str], params: list, operation: str) -> Optional[User]:
        if not fields:
            return self.find_by_id(user_id)
        fields.append("updated_at = ?")
        params.append(now_db())
        params.append(user_id)
        try:
            cur = self.conn.execute(f"UPDATE users SET {', '.join(fields)} WHERE id = ?", params)
            self.conn.commit()
        except sqlite3.Error as e:
            print(f"[USERS] Error during {operation}: {e}")
            raise StorageError(f"Failed to {operation}")
        if cur.rowcount == 0:
            return None
        return self.find_by_id(user_id)

    # ---------------------------------------------------------
    # Project back-references
    # ---------------------------------------------------------
    def get_user_projects(self, user_id: int) -> Dict[str, List[int]]:
        """Owned and member project ids for a user (owner excluded from members)."""
        try:
            owned = self.conn.execute(
                "SELECT id FROM projects WHERE owner_id = ? ORDER BY id", (user_id,)
            ).fetchall()
            member = self.conn.execute(
                """
                SELECT project_id FROM project_members
                WHERE user_id = ? AND role != 'owner'
                ORDER BY project_id
                """,
                (user_id,),
            ).fetchall()
        except sqlite3.Error as e:
            print(f"[USERS] Error getting user projects: {e}")
            raise StorageError("Failed to get user projects")
        return {
            "owned_projects": [r["id"] for r in owned],
            "member_projects": [r["project_id"] for r in member],
        }
