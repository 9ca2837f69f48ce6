"""
collabhub/projects.py

Project persistence: the project row plus its embedded Members and Resources.

Policy (who may do what, duplicate names, owner protection) lives in
membership.py; this module only reads and writes rows and wraps storage
failures into StorageError.
"""

from __future__ import annotations

import sqlite3
from typing import List, Optional

from collabhub.db import from_db_time, now_db, transaction
from collabhub.errors import Conflict, StorageError
from collabhub.invitations import generate_invitation_code
from collabhub.models import Member, MemberRole, Project, Resource


class ProjectStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def generate_invitation_code(self) -> str:
        return generate_invitation_code()

    # ---------------------------------------------------------
    # Row loading
    # ---------------------------------------------------------
    def _load(self, row: sqlite3.Row) -> Project:
        members = self.conn.execute(
            "SELECT user_id, role, joined_at FROM project_members WHERE project_id = ? ORDER BY joined_at, id",
            (row["id"],),
        ).fetchall()
        resources = self.conn.execute(
            "SELECT id, resource_name, link, created_at FROM project_resources WHERE project_id = ? ORDER BY id",
            (row["id"],),
        ).fetchall()
        return Project(
            id=row["id"],
            name=row["name"],
            description=row["description"] or "",
            invitation_code=row["invitation_code"],
            owner_id=row["owner_id"],
            members=[
                Member(user_id=m["user_id"], role=MemberRole(m["role"]), joined_at=from_db_time(m["joined_at"]))
                for m in members
            ],
            resources=[
                Resource(
                    id=r["id"],
                    resource_name=r["resource_name"],
                    link=r["link"],
                    created_at=from_db_time(r["created_at"]),
                )
                for r in resources
            ],
            is_active=bool(row["is_active"]),
            created_at=from_db_time(row["created_at"]),
            updated_at=from_db_time(row["updated_at"]),
        )

    def _find_one(self, where: str, params: tuple) -> Optional[Project]:
        try:
            row = self.conn.execute(f"SELECT * FROM projects WHERE {where}", params).fetchone()
            return self._load(row) if row else None
        except sqlite3.Error as e:
            print(f"[PROJECTS] Error finding project ({where}): {e}")
            raise StorageError("Failed to find project")

    def _find_many(self, sql: str, params: tuple) -> List[Project]:
        try:
            rows = self.conn.execute(sql, params).fetchall()
            return [self._load(r) for r in rows]
        except sqlite3.Error as e:
            print(f"[PROJECTS] Error finding projects: {e}")
            raise StorageError("Failed to find projects")

    # ---------------------------------------------------------
    # CRUD
    # ---------------------------------------------------------
    def create(self, name: str, description: str, invitation_code: str, owner_id: int) -> Project:
        """Insert the project and its owner Member in one transaction."""
        now = now_db()
        try:
            with transaction(self.conn):
                cur = self.conn.execute(
                    """
                    INSERT INTO projects (name, description, invitation_code, owner_id, is_active, created_at, updated_at)
                    VALUES (?, ?, ?, ?, 1, ?, ?)
                    """,
                    (name, description, invitation_code, owner_id, now, now),
                )
                project_id = cur.lastrowid
                self.conn.execute(
                    "INSERT INTO project_members (project_id, user_id, role, joined_at) VALUES (?, ?, 'owner', ?)",
                    (project_id, owner_id, now),
                )
        except sqlite3.Error as e:
            print(f"[PROJECTS] Error creating project: {e}")
            raise StorageError("Failed to create project")
        return self.find_by_id(project_id)

    def find_by_id(self, project_id: int) -> Optional[Project]:
        return self._find_one("id = ?", (project_id,))

    def find_by_invitation_code(self, invitation_code: str) -> Optional[Project]:
        return self._find_one("invitation_code = ?", (invitation_code,))

    def find_by_owner_id(self, owner_id: int) -> List[Project]:
        return self._find_many(
            "SELECT * FROM projects WHERE owner_id = ? ORDER BY created_at DESC, id DESC", (owner_id,)
        )

    def find_by_member_id(self, user_id: int) -> List[Project]:
        return self._find_many(
            """
            SELECT p.* FROM projects p
            JOIN project_members m ON m.project_id = p.id
            WHERE m.user_id = ?
            ORDER BY p.created_at DESC, p.id DESC
            """,
            (user_id,),
        )

    def update(self, project_id: int, name: Optional[str] = None, description: Optional[str] = None) -> Optional[Project]:
        fields = []
        params: list = []
        if name is not None:
            fields.append("name = ?")
            params.append(name)
        if description is not None:
            fields.append("description = ?")
            params.append(description)
        if not fields:
            return self.find_by_id(project_id)

        fields.append("updated_at = ?")
        params.extend([now_db(), project_id])
        try:
            cur = self.conn.execute(f"UPDATE projects SET {', '.join(fields)} WHERE id = ?", params)
            self.conn.commit()
        except sqlite3.Error as e:
            print(f"[PROJECTS] Error updating project: {e}")
            raise StorageError("Failed to update project")
        if cur.rowcount == 0:
            return None
        return self.find_by_id(project_id)

    def delete(self, project_id: int) -> None:
        """Delete the project; members, resources, invitations and tasks cascade."""
        try:
            self.conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            self.conn.commit()
        except sqlite3.Error as e:
            print(f"[PROJECTS] Error deleting project: {e}")
            raise StorageError("Failed to delete project")

    def _touch(self, project_id: int) -> None:
        self.conn.execute("UPDATE projects SET updated_at = ? WHERE id = ?", (now_db(), project_id))

    # ---------------------------------------------------------
    # Members
    # ---------------------------------------------------------
    def add_member(self, project_id: int, user_id: int, role: MemberRole = MemberRole.member) -> Optional[Project]:
        """Append a Member. Raises Conflict if the user is already in the project."""
        try:
            with transaction(self.conn):
                self.conn.execute(
                    "INSERT INTO project_members (project_id, user_id, role, joined_at) VALUES (?, ?, ?, ?)",
                    (project_id, user_id, MemberRole(role).value, now_db()),
                )
                self._touch(project_id)
        except sqlite3.IntegrityError as e:
            if "unique" in str(e).lower():
                raise Conflict("Member already exists")
            print(f"[PROJECTS] Integrity error adding member: {e}")
            raise StorageError("Failed to add member")
        except sqlite3.Error as e:
            print(f"[PROJECTS] Error adding member: {e}")
            raise StorageError("Failed to add member")
        return self.find_by_id(project_id)

    def remove_member(self, project_id: int, user_id: int) -> Optional[Project]:
        try:
            with transaction(self.conn):
                self.conn.execute(
                    "DELETE FROM project_members WHERE project_id = ? AND user_id = ?", (project_id, user_id)
                )
                self._touch(project_id)
        except sqlite3.Error as e:
            print(f"[PROJECTS] Error removing member: {e}")
            raise StorageError("Failed to remove member")
        return self.find_by_id(project_id)

    def set_member_role(self, project_id: int, user_id: int, role: MemberRole) -> Optional[Project]:
        try:
            with transaction(self.conn):
                self.conn.execute(
                    "UPDATE project_members SET role = ? WHERE project_id = ? AND user_id = ?",
                    (MemberRole(role).value, project_id, user_id),
                )
                self._touch(project_id)
        except sqlite3.Error as e:
            print(f"[PROJECTS] Error updating member role: {e}")
            raise StorageError("Failed to update member role")
        return self.find_by_id(project_id)

    def is_user_admin(self, project_id: int, user_id: int) -> bool:
        try:
            row = self.conn.execute(
                "SELECT role FROM project_members WHERE project_id = ? AND user_id = ?", (project_id, user_id)
            ).fetchone()
        except sqlite3.Error as e:
            print(f"[PROJECTS] Error checking admin status: {e}")
            raise StorageError("Failed to check admin status")
        return row is not None and row["role"] in (MemberRole.owner.value, MemberRole.admin.value)

    # ---------------------------------------------------------
    # Resources
    # ---------------------------------------------------------
    def add_resource(self, project_id: int, resource_name: str, link: str) -> Optional[Project]:
        try:
            with transaction(self.conn):
                self.conn.execute(
                    "INSERT INTO project_resources (project_id, resource_name, link, created_at) VALUES (?, ?, ?, ?)",
                    (project_id, resource_name, link, now_db()),
                )
                self._touch(project_id)
        except sqlite3.Error as e:
            print(f"[PROJECTS] Error adding resource: {e}")
            raise StorageError("Failed to add resource")
        return self.find_by_id(project_id)

    def remove_resource(self, project_id: int, resource_id: int) -> bool:
        """Delete one resource by its stable id. Returns False if it was not there."""
        try:
            with transaction(self.conn):
                cur = self.conn.execute(
                    "DELETE FROM project_resources WHERE project_id = ? AND id = ?", (project_id, resource_id)
                )
                if cur.rowcount:
                    self._touch(project_id)
        except sqlite3.Error as e:
            print(f"[PROJECTS] Error removing resource: {e}")
            raise StorageError("Failed to remove resource")
        return cur.rowcount > 0
