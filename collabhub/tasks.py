"""
collabhub/tasks.py

Task Store: project-scoped tasks, their assignees, and the per-assignee
external calendar event ids.

Semantics:
- A task always has a title and at least one assignee.
- project_id is fixed at creation; update() refuses to move a task.
- Caller-facing status labels ("In Progress", "Done", ...) are mapped onto the
  closed TaskStatus enum; unknown labels fall back to not_started.
- Listings are newest first, except assignee and upcoming-deadline queries
  which are ordered by deadline.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Union

from collabhub.config import IS_DEV
from collabhub.db import from_db_time, now_db, to_db_time, transaction, utcnow
from collabhub.errors import StorageError, ValidationFailed
from collabhub.models import Task, TaskStatus
from collabhub.users import UserStore

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 2000

STATUS_LABELS: Dict[str, TaskStatus] = {
    "Not Started": TaskStatus.not_started,
    "In Progress": TaskStatus.in_progress,
    "Done": TaskStatus.completed,
    "Blocked": TaskStatus.blocked,
    "Backlog": TaskStatus.backlog,
}

UPDATABLE_FIELDS = ("title", "description", "status", "deadline", "assignees")


def map_status_label(label: Union[str, TaskStatus, None]) -> TaskStatus:
    """Map a UI label or canonical value to TaskStatus (default not_started)."""
    if isinstance(label, TaskStatus):
        return label
    if label in STATUS_LABELS:
        return STATUS_LABELS[label]
    try:
        return TaskStatus(label)
    except ValueError:
        return TaskStatus.not_started


def normalize_deadline(deadline: Optional[datetime]) -> Optional[datetime]:
    """Aware datetimes are converted to naive UTC, which is how they are stored."""
    if deadline is not None and deadline.tzinfo is not None:
        return deadline.astimezone(timezone.utc).replace(tzinfo=None)
    return deadline


def _validate_text(title: Optional[str], description: Optional[str]) -> None:
    if title is not None:
        if not title.strip():
            raise ValidationFailed("Task title is required")
        if len(title) > TITLE_MAX_LENGTH:
            raise ValidationFailed(f"Task title must be at most {TITLE_MAX_LENGTH} characters")
    if description is not None and len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationFailed(f"Task description must be at most {DESCRIPTION_MAX_LENGTH} characters")


class TaskStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.users = UserStore(conn)

    # ---------------------------------------------------------
    # Assignee resolution
    # ---------------------------------------------------------
    def resolve_assignee(self, value: Union[int, str]) -> int:
        """
        Resolve an assignee given as a user id or a display name.

        Numeric values that match an existing user win; anything else is
        looked up by name (case-insensitive exact match).

        Raises:
            ValidationFailed: no user, or more than one user, has that name
        """
        text = str(value).strip()
        if text.isdigit() and self.users.find_by_id(int(text)) is not None:
            return int(text)

        matches = self.users.find_by_name(text)
        if not matches:
            raise ValidationFailed(f'User "{text}" not found')
        if len(matches) > 1:
            raise ValidationFailed(f'User name "{text}" is ambiguous')
        return matches[0].id

    def resolve_assignees(self, values: Iterable[Union[int, str]]) -> List[int]:
        resolved: List[int] = []
        for value in values:
            user_id = self.resolve_assignee(value)
            if user_id not in resolved:
                resolved.append(user_id)
        return resolved

    # ---------------------------------------------------------
    # Row loading
    # ---------------------------------------------------------
    def _load(self, row: sqlite3.Row) -> Task:
        assignees = self.conn.execute(
            "SELECT user_id FROM task_assignees WHERE task_id = ? ORDER BY position, user_id",
            (row["id"],),
        ).fetchall()
        return Task(
            id=row["id"],
            project_id=row["project_id"],
            title=row["title"],
            description=row["description"],
            status=TaskStatus(row["status"]),
            assignees=[a["user_id"] for a in assignees],
            created_by=row["created_by"],
            deadline=from_db_time(row["deadline"]),
            calendar_events=self.get_calendar_events(row["id"]),
            created_at=from_db_time(row["created_at"]),
            updated_at=from_db_time(row["updated_at"]),
        )

    def _find_many(self, sql: str, params: tuple, operation: str) -> List[Task]:
        try:
            rows = self.conn.execute(sql, params).fetchall()
            return [self._load(r) for r in rows]
        except sqlite3.Error as e:
            print(f"[TASKS] Error during {operation}: {e}")
            raise StorageError(f"Failed to {operation}")

    def _write_assignees(self, task_id: int, assignees: List[int]) -> None:
        self.conn.execute("DELETE FROM task_assignees WHERE task_id = ?", (task_id,))
        self.conn.executemany(
            "INSERT INTO task_assignees (task_id, user_id, position) VALUES (?, ?, ?)",
            [(task_id, user_id, position) for position, user_id in enumerate(assignees)],
        )

    # ---------------------------------------------------------
    # CRUD
    # ---------------------------------------------------------
    def create(
        self,
        project_id: int,
        title: str,
        assignees: List[int],
        status: Union[str, TaskStatus],
        created_by: int,
        deadline: Optional[datetime] = None,
        description: Optional[str] = None,
    ) -> Task:
        _validate_text(title or "", description)
        assignees = list(dict.fromkeys(assignees or []))
        if not assignees:
            raise ValidationFailed("At least one assignee is required")

        now = now_db()
        try:
            with transaction(self.conn):
                cur = self.conn.execute(
                    """
                    INSERT INTO tasks (project_id, title, description, status, created_by, deadline, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        project_id,
                        title.strip(),
                        description,
                        map_status_label(status).value,
                        created_by,
                        to_db_time(normalize_deadline(deadline)),
                        now,
                        now,
                    ),
                )
                task_id = cur.lastrowid
                self._write_assignees(task_id, assignees)
        except sqlite3.Error as e:
            print(f"[TASKS] Error creating task: {e}")
            raise StorageError("Failed to create task")

        task = self.find_by_id(task_id)
        if IS_DEV:
            print(f"[TASKS] Task created: {task.id} project={project_id} assignees={task.assignees}")
        return task

    def find_by_id(self, task_id: int) -> Optional[Task]:
        try:
            row = self.conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return self._load(row) if row else None
        except sqlite3.Error as e:
            print(f"[TASKS] Error finding task: {e}")
            raise StorageError("Failed to find task")

    def find_by_project_id(self, project_id: int) -> List[Task]:
        return self._find_many(
            "SELECT * FROM tasks WHERE project_id = ? ORDER BY created_at DESC, id DESC",
            (project_id,),
            "find tasks by project",
        )

    def find_by_assignee(self, user_id: int) -> List[Task]:
        return self._find_many(
            """
            SELECT t.* FROM tasks t
            JOIN task_assignees a ON a.task_id = t.id
            WHERE a.user_id = ?
            ORDER BY t.deadline IS NULL, t.deadline, t.id
            """,
            (user_id,),
            "find tasks by assignee",
        )

    def find_by_status(self, status: Union[str, TaskStatus], project_id: Optional[int] = None) -> List[Task]:
        status = TaskStatus(status)
        if project_id is not None:
            return self._find_many(
                "SELECT * FROM tasks WHERE status = ? AND project_id = ? ORDER BY created_at DESC, id DESC",
                (status.value, project_id),
                "find tasks by status",
            )
        return self._find_many(
            "SELECT * FROM tasks WHERE status = ? ORDER BY created_at DESC, id DESC",
            (status.value,),
            "find tasks by status",
        )

    def find_upcoming_deadlines(self, days: int = 7) -> List[Task]:
        """Unfinished tasks due between now and now + days, soonest first."""
        now = utcnow()
        return self._find_many(
            """
            SELECT * FROM tasks
            WHERE deadline IS NOT NULL AND deadline >= ? AND deadline <= ? AND status != 'completed'
            ORDER BY deadline, id
            """,
            (to_db_time(now), to_db_time(now + timedelta(days=days))),
            "find upcoming deadlines",
        )

    def get_all_tasks(self) -> List[Task]:
        return self._find_many("SELECT * FROM tasks ORDER BY created_at DESC, id DESC", (), "get all tasks")

    def update(self, task_id: int, **fields) -> Optional[Task]:
        """
        Update title/description/status/deadline/assignees.

        Returns None if the task does not exist.

        Raises:
            ValidationFailed: project_id was passed, or an unknown field, or invalid text
        """
        if "project_id" in fields:
            raise ValidationFailed("Task project cannot be changed")
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationFailed(f"Unknown task fields: {', '.join(sorted(unknown))}")

        _validate_text(fields.get("title"), fields.get("description"))
        assignees = fields.pop("assignees", None)
        if assignees is not None:
            assignees = list(dict.fromkeys(assignees))
            if not assignees:
                raise ValidationFailed("At least one assignee is required")

        columns = []
        params: list = []
        for name, value in fields.items():
            if name == "status":
                value = map_status_label(value).value
            elif name == "deadline":
                value = to_db_time(normalize_deadline(value))
            elif name == "title":
                value = value.strip()
            columns.append(f"{name} = ?")
            params.append(value)
        columns.append("updated_at = ?")
        params.extend([now_db(), task_id])

        try:
            with transaction(self.conn):
                cur = self.conn.execute(f"UPDATE tasks SET {', '.join(columns)} WHERE id = ?", params)
                if cur.rowcount and assignees is not None:
                    self._write_assignees(task_id, assignees)
        except sqlite3.Error as e:
            print(f"[TASKS] Error updating task: {e}")
            raise StorageError("Failed to update task")
        if cur.rowcount == 0:
            return None
        return self.find_by_id(task_id)

    def delete(self, task_id: int) -> None:
        try:
            self.conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            self.conn.commit()
        except sqlite3.Error as e:
            print(f"[TASKS] Error deleting task: {e}")
            raise StorageError("Failed to delete task")

    # ---------------------------------------------------------
    # Assignees
    # ---------------------------------------------------------
    def add_assignee(self, task_id: int, user_id: int) -> Optional[Task]:
        try:
            with transaction(self.conn):
                row = self.conn.execute(
                    "SELECT COALESCE(MAX(position), -1) + 1 AS next FROM task_assignees WHERE task_id = ?",
                    (task_id,),
                ).fetchone()
                self.conn.execute(
                    "INSERT OR IGNORE INTO task_assignees (task_id, user_id, position) VALUES (?, ?, ?)",
                    (task_id, user_id, row["next"]),
                )
        except sqlite3.Error as e:
            print(f"[TASKS] Error adding assignee: {e}")
            raise StorageError("Failed to add assignee")
        return self.find_by_id(task_id)

    def remove_assignee(self, task_id: int, user_id: int) -> Optional[Task]:
        try:
            self.conn.execute(
                "DELETE FROM task_assignees WHERE task_id = ? AND user_id = ?", (task_id, user_id)
            )
            self.conn.commit()
        except sqlite3.Error as e:
            print(f"[TASKS] Error removing assignee: {e}")
            raise StorageError("Failed to remove assignee")
        return self.find_by_id(task_id)

    # ---------------------------------------------------------
    # Calendar event ids (one per task + assignee)
    # ---------------------------------------------------------
    def get_calendar_events(self, task_id: int) -> Dict[int, str]:
        try:
            rows = self.conn.execute(
                "SELECT user_id, event_id FROM task_calendar_events WHERE task_id = ? ORDER BY created_at, rowid",
                (task_id,),
            ).fetchall()
        except sqlite3.Error as e:
            print(f"[TASKS] Error reading calendar events: {e}")
            raise StorageError("Failed to get calendar events")
        return {r["user_id"]: r["event_id"] for r in rows}

    def set_calendar_event(self, task_id: int, user_id: int, event_id: str) -> None:
        try:
            self.conn.execute(
                """
                INSERT INTO task_calendar_events (task_id, user_id, event_id, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(task_id, user_id) DO UPDATE SET event_id = excluded.event_id
                """,
                (task_id, user_id, event_id, now_db()),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            print(f"[TASKS] Error storing calendar event: {e}")
            raise StorageError("Failed to set calendar event")

    def clear_calendar_events(self, task_id: int, user_id: Optional[int] = None) -> None:
        try:
            if user_id is None:
                self.conn.execute("DELETE FROM task_calendar_events WHERE task_id = ?", (task_id,))
            else:
                self.conn.execute(
                    "DELETE FROM task_calendar_events WHERE task_id = ? AND user_id = ?", (task_id, user_id)
                )
            self.conn.commit()
        except sqlite3.Error as e:
            print(f"[TASKS] Error clearing calendar events: {e}")
            raise StorageError("Failed to clear calendar events")
