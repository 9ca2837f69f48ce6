"""
collabhub/invitations.py

Invitation Ledger: per-email invitation codes for a project.

This ledger is independent from the project-level invitation code used by
join_project; both only share the Project they point at.

Semantics:
- Codes are 8 characters from [A-Z0-9], sampled uniformly.
- create_invitation does not pre-check collisions; the UNIQUE index on
  invitation_code rejects duplicates (the caller may retry).
- An invitation is valid only while pending AND expires_at is in the future,
  regardless of whether the expiry sweep has run.
- Lookups return None / [] on miss; storage errors raise StorageError with a
  fixed message.
"""

from __future__ import annotations

import secrets
import sqlite3
from datetime import timedelta
from typing import List, Optional

from collabhub.config import (
    INVITATION_CODE_ALPHABET,
    INVITATION_CODE_LENGTH,
    INVITATION_EXPIRY_DAYS,
)
from collabhub.db import from_db_time, to_db_time, utcnow
from collabhub.errors import StorageError
from collabhub.models import Invitation, InvitationStatus


def generate_invitation_code() -> str:
    """Return a random 8-character uppercase alphanumeric code."""
    return "".join(secrets.choice(INVITATION_CODE_ALPHABET) for _ in range(INVITATION_CODE_LENGTH))


def _row_to_invitation(row: sqlite3.Row) -> Invitation:
    return Invitation(
        id=row["id"],
        project_id=row["project_id"],
        invitation_code=row["invitation_code"],
        invited_email=row["invited_email"],
        invited_by=row["invited_by"],
        role=row["role"],
        status=InvitationStatus(row["status"]),
        created_at=from_db_time(row["created_at"]),
        expires_at=from_db_time(row["expires_at"]),
    )


class InvitationLedger:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # ---------------------------------------------------------
    # Creation
    # ---------------------------------------------------------
    def generate_invitation_code(self) -> str:
        return generate_invitation_code()

    def create_invitation(
        self,
        project_id: int,
        invited_email: str,
        invited_by: int,
        expires_in_days: int = INVITATION_EXPIRY_DAYS,
    ) -> Invitation:
        now = utcnow()
        expires_at = now + timedelta(days=expires_in_days)
        code = self.generate_invitation_code()
        try:
            cur = self.conn.execute(
                """
                INSERT INTO project_invitations (
                    project_id, invitation_code, invited_email, invited_by,
                    role, status, created_at, expires_at
                ) VALUES (?, ?, ?, ?, 'user', 'pending', ?, ?)
                """,
                (
                    project_id,
                    code,
                    invited_email.strip().lower(),
                    invited_by,
                    to_db_time(now),
                    to_db_time(expires_at),
                ),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            print(f"[INVITATIONS] Error creating project invitation: {e}")
            raise StorageError("Failed to create project invitation")

        invitation = self.find_by_id(cur.lastrowid)
        print(f"[INVITATIONS] Created invitation id={invitation.id} project_id={project_id} "
              f"expires_at={invitation.expires_at.isoformat()}")
        return invitation

    # ---------------------------------------------------------
    # Lookups
    # ---------------------------------------------------------
    def _find_many(self, where: str, params: tuple, operation: str) -> List[Invitation]:
        try:
            rows = self.conn.execute(
                f"SELECT * FROM project_invitations WHERE {where} ORDER BY created_at DESC, id DESC",
                params,
            ).fetchall()
        except sqlite3.Error as e:
            print(f"[INVITATIONS] Error finding project invitations ({operation}): {e}")
            raise StorageError(f"Failed to find {operation}")
        return [_row_to_invitation(r) for r in rows]

    def find_by_id(self, invitation_id: int) -> Optional[Invitation]:
        try:
            row = self.conn.execute(
                "SELECT * FROM project_invitations WHERE id = ?", (invitation_id,)
            ).fetchone()
        except sqlite3.Error as e:
            print(f"[INVITATIONS] Error finding project invitation by ID: {e}")
            raise StorageError("Failed to find project invitation")
        return _row_to_invitation(row) if row else None

    def find_by_invitation_code(self, invitation_code: str) -> Optional[Invitation]:
        try:
            row = self.conn.execute(
                "SELECT * FROM project_invitations WHERE invitation_code = ?", (invitation_code,)
            ).fetchone()
        except sqlite3.Error as e:
            print(f"[INVITATIONS] Error finding project invitation by code: {e}")
            raise StorageError("Failed to find project invitation")
        return _row_to_invitation(row) if row else None

    def find_by_email(self, email: str) -> List[Invitation]:
        return self._find_many("invited_email = ?", (email.strip().lower(),), "project invitations")

    def find_by_project_id(self, project_id: int) -> List[Invitation]:
        return self._find_many("project_id = ?", (project_id,), "project invitations")

    def find_by_status(self, status: InvitationStatus, project_id: Optional[int] = None) -> List[Invitation]:
        status = InvitationStatus(status)
        if project_id is not None:
            return self._find_many(
                "status = ? AND project_id = ?", (status.value, project_id), "project invitations"
            )
        return self._find_many("status = ?", (status.value,), "project invitations")

    def find_pending_invitations(self, project_id: Optional[int] = None) -> List[Invitation]:
        now = to_db_time(utcnow())
        if project_id is not None:
            return self._find_many(
                "status = 'pending' AND expires_at > ? AND project_id = ?",
                (now, project_id),
                "pending project invitations",
            )
        return self._find_many(
            "status = 'pending' AND expires_at > ?", (now,), "pending project invitations"
        )

    # ---------------------------------------------------------
    # Mutations
    # ---------------------------------------------------------
    def update_status(self, invitation_id: int, status: InvitationStatus) -> Optional[Invitation]:
        """Set status by id. Transition legality is not checked here."""
        status = InvitationStatus(status)
        try:
            cur = self.conn.execute(
                "UPDATE project_invitations SET status = ? WHERE id = ?", (status.value, invitation_id)
            )
            self.conn.commit()
        except sqlite3.Error as e:
            print(f"[INVITATIONS] Error updating project invitation status: {e}")
            raise StorageError("Failed to update project invitation status")
        if cur.rowcount == 0:
            return None
        return self.find_by_id(invitation_id)

    def update_status_by_code(self, invitation_code: str, status: InvitationStatus) -> Optional[Invitation]:
        status = InvitationStatus(status)
        try:
            cur = self.conn.execute(
                "UPDATE project_invitations SET status = ? WHERE invitation_code = ?",
                (status.value, invitation_code),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            print(f"[INVITATIONS] Error updating project invitation status by code: {e}")
            raise StorageError("Failed to update project invitation status")
        if cur.rowcount == 0:
            return None
        return self.find_by_invitation_code(invitation_code)

    def delete(self, invitation_id: int) -> None:
        try:
            self.conn.execute("DELETE FROM project_invitations WHERE id = ?", (invitation_id,))
            self.conn.commit()
        except sqlite3.Error as e:
            print(f"[INVITATIONS] Error deleting project invitation: {e}")
            raise StorageError("Failed to delete project invitation")

    def delete_by_project_id(self, project_id: int) -> None:
        try:
            self.conn.execute("DELETE FROM project_invitations WHERE project_id = ?", (project_id,))
            self.conn.commit()
        except sqlite3.Error as e:
            print(f"[INVITATIONS] Error deleting project invitations by project: {e}")
            raise StorageError("Failed to delete project invitations")

    def cleanup_expired_invitations(self) -> int:
        """Move every pending invitation past its expiry to 'expired'. Returns rows changed."""
        try:
            cur = self.conn.execute(
                """
                UPDATE project_invitations
                SET status = 'expired'
                WHERE status = 'pending' AND expires_at < ?
                """,
                (to_db_time(utcnow()),),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            print(f"[INVITATIONS] Error cleaning up expired invitations: {e}")
            raise StorageError("Failed to cleanup expired invitations")
        if cur.rowcount:
            print(f"[INVITATIONS] Expired {cur.rowcount} pending invitation(s)")
        return cur.rowcount

    # ---------------------------------------------------------
    # Validity
    # ---------------------------------------------------------
    def is_invitation_valid(self, invitation_code: str) -> bool:
        try:
            invitation = self.find_by_invitation_code(invitation_code)
        except StorageError as e:
            print(f"[INVITATIONS] Error checking invitation validity: {e}")
            return False
        return invitation is not None and invitation.is_valid(utcnow())
