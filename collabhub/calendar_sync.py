"""
collabhub/calendar_sync.py

Calendar Sync Bridge: mirrors task deadlines into each assignee's calendar.

Flow:
1. A task mutation that carries a deadline calls enqueue(task_id), which
   writes a row to the calendar_sync_jobs outbox.
2. drain() (scheduled as a FastAPI background task) claims pending jobs one
   at a time (pending -> running) and runs sync_task for each claimed job.
   At most one job per task is running, across every drain and connection.
3. sync_task fans out sequentially over the assignees. Each assignee has its
   own event id, so the first sync creates an event and later syncs update it.

Calendar sync is advisory: provider failures are printed and swallowed, one
assignee's failure never stops the others, and nothing here rolls back the
task mutation that triggered it.
"""

from __future__ import annotations

import sqlite3
from typing import List, Optional

from collabhub.calendar_service import CalendarEventData, GoogleCalendarService
from collabhub.config import CALENDAR_DRAIN_BATCH, IS_DEV
from collabhub.db import get_db_connection, now_db
from collabhub.errors import StorageError
from collabhub.models import Task, TaskStatus
from collabhub.tasks import TaskStore
from collabhub.users import UserStore

STATUS_DISPLAY = {
    TaskStatus.not_started: "Not Started",
    TaskStatus.in_progress: "In Progress",
    TaskStatus.completed: "Completed",
    TaskStatus.blocked: "Blocked",
    TaskStatus.backlog: "Backlog",
}


def format_status_for_display(status) -> str:
    try:
        return STATUS_DISPLAY[TaskStatus(status)]
    except ValueError:
        return str(status)


def build_calendar_description(task: Task, status_display: str) -> str:
    parts = [f"Status: {status_display}"]
    if task.description:
        parts.append(f"\nDescription: {task.description}")
    if len(task.assignees) > 1:
        parts.append(f"\nAssignees: {len(task.assignees)} team members")
    if not task.description:
        parts.append("\nTask assigned in project")
    return "".join(parts)


def build_event(task: Task) -> CalendarEventData:
    status_display = format_status_for_display(task.status)
    return CalendarEventData(
        summary=f"{task.title} [{status_display}]",
        description=build_calendar_description(task, status_display),
        start=task.deadline,
        end=task.deadline,
    )


class CalendarSyncBridge:
    def __init__(self, conn: sqlite3.Connection, provider: Optional[GoogleCalendarService] = None):
        self.conn = conn
        self.tasks = TaskStore(conn)
        self.users = UserStore(conn)
        self.provider = provider or GoogleCalendarService()

    # ---------------------------------------------------------
    # Fan-out
    # ---------------------------------------------------------
    def sync_task(self, task: Task, errors: Optional[List[str]] = None) -> int:
        """
        Create or update the calendar event of every sync-enabled assignee.

        Args:
            task: Task to mirror
            errors: Optional list that collects one message per failed assignee

        Returns:
            Number of assignees whose calendar was written.
        """
        if task.deadline is None:
            return 0

        event = build_event(task)
        stored = self.tasks.get_calendar_events(task.id)
        synced = 0

        for user_id in task.assignees:
            try:
                if self._sync_assignee(task, user_id, event, stored.get(user_id)):
                    synced += 1
            except Exception as e:
                print(f"[CALENDAR] Failed to sync calendar for user {user_id}: {e}")
                if errors is not None:
                    errors.append(f"user {user_id}: {e}")

        # Users no longer assigned lose their event
        for user_id, event_id in stored.items():
            if user_id not in task.assignees:
                self._delete_event(task, user_id, event_id, errors)

        return synced

    def _sync_assignee(
        self, task: Task, user_id: int, event: CalendarEventData, event_id: Optional[str]
    ) -> bool:
        user = self.users.find_by_id(user_id)
        if user is None:
            print(f"[CALENDAR] Assignee {user_id} not found")
            return False
        if not user.calendar_sync_enabled:
            if IS_DEV:
                print(f"[CALENDAR] Calendar not enabled for user {user_id}")
            return False

        if event_id:
            self.provider.update_event(user.calendar_refresh_token, event_id, event)
            print(f"[CALENDAR] Event updated for user {user_id} task {task.id}")
        else:
            event_id = self.provider.create_event(user.calendar_refresh_token, event)
            self.tasks.set_calendar_event(task.id, user_id, event_id)
            print(f"[CALENDAR] Event created for user {user_id} task {task.id}: {event_id}")
        return True

    def _delete_event(
        self, task: Task, user_id: int, event_id: str, errors: Optional[List[str]] = None
    ) -> bool:
        try:
            user = self.users.find_by_id(user_id)
            if user is None or not user.calendar_refresh_token:
                return False
            self.provider.delete_event(user.calendar_refresh_token, event_id)
            self.tasks.clear_calendar_events(task.id, user_id)
        except Exception as e:
            print(f"[CALENDAR] Failed to delete calendar event for user {user_id}: {e}")
            if errors is not None:
                errors.append(f"user {user_id}: {e}")
            return False
        print(f"[CALENDAR] Event deleted for user {user_id} task {task.id}")
        return True

    def remove_task(self, task: Task) -> int:
        """
        Delete every stored event of a task, before the task row goes away.

        Returns:
            Number of events deleted (a provider 404 counts as deleted).
        """
        try:
            events = self.tasks.get_calendar_events(task.id)
        except StorageError as e:
            print(f"[CALENDAR] Error loading calendar events for task {task.id}: {e.message}")
            return 0

        return sum(1 for user_id, event_id in events.items() if self._delete_event(task, user_id, event_id))

    # ---------------------------------------------------------
    # Outbox
    # ---------------------------------------------------------
    def enqueue(self, task_id: int, action: str = "sync") -> int:
        now = now_db()
        try:
            cur = self.conn.execute(
                """
                INSERT INTO calendar_sync_jobs (task_id, action, status, attempts, created_at, updated_at)
                VALUES (?, ?, 'pending', 0, ?, ?)
                """,
                (task_id, action, now, now),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            print(f"[CALENDAR] Error enqueueing sync job for task {task_id}: {e}")
            raise StorageError("Failed to enqueue calendar sync")
        if IS_DEV:
            print(f"[CALENDAR] Enqueued sync job {cur.lastrowid} for task {task_id}")
        return cur.lastrowid

    def pending_jobs(self, limit: int = CALENDAR_DRAIN_BATCH) -> list:
        return self.conn.execute(
            "SELECT * FROM calendar_sync_jobs WHERE status = 'pending' ORDER BY id LIMIT ?", (limit,)
        ).fetchall()

    def claim_job(self, job_id: int, task_id: int) -> bool:
        """
        Move a pending job to running.

        The claim is refused when the job was taken by another drain or when
        another job of the same task is already running, so a task never has
        two syncs in flight. A refused job stays pending.
        """
        cur = self.conn.execute(
            """
            UPDATE calendar_sync_jobs
            SET status = 'running', updated_at = ?
            WHERE id = ? AND status = 'pending'
              AND NOT EXISTS (
                  SELECT 1 FROM calendar_sync_jobs
                  WHERE task_id = ? AND status = 'running'
              )
            """,
            (now_db(), job_id, task_id),
        )
        self.conn.commit()
        return cur.rowcount == 1

    def _finish(self, job_id: int, status: str, error: Optional[str] = None) -> None:
        self.conn.execute(
            """
            UPDATE calendar_sync_jobs
            SET status = ?, attempts = attempts + 1, last_error = ?, updated_at = ?
            WHERE id = ?
            """,
            (status, error, now_db(), job_id),
        )
        self.conn.commit()

    def drain(self, limit: int = CALENDAR_DRAIN_BATCH) -> int:
        """
        Run pending sync jobs in order, `limit` per pass.

        Only claimed jobs run. Jobs skipped because their task was busy are
        picked up by the next pass of whichever drain finished that task, so
        passes repeat until one claims nothing.

        Returns:
            Number of jobs this drain ran.
        """
        processed = 0
        while True:
            try:
                jobs = self.pending_jobs(limit)
            except sqlite3.Error as e:
                print(f"[CALENDAR] Error reading sync jobs: {e}")
                return processed

            claimed = 0
            for job in jobs:
                try:
                    if not self.claim_job(job["id"], job["task_id"]):
                        continue
                except sqlite3.Error as e:
                    print(f"[CALENDAR] Could not claim job {job['id']}: {e}")
                    self.conn.rollback()
                    continue
                claimed += 1
                self._run_job(job)

            processed += claimed
            if claimed == 0:
                return processed

    def _run_job(self, job) -> None:
        errors: List[str] = []
        try:
            task = self.tasks.find_by_id(job["task_id"])
            if task is not None:
                self.sync_task(task, errors)
            if errors:
                print(f"[CALENDAR] Sync job {job['id']} failed for {len(errors)} assignee(s)")
                self._finish(job["id"], "failed", "; ".join(errors))
            else:
                self._finish(job["id"], "done")
        except Exception as e:
            print(f"[CALENDAR] Sync job {job['id']} failed: {e}")
            try:
                self._finish(job["id"], "failed", str(e))
            except sqlite3.Error as db_error:
                print(f"[CALENDAR] Could not record failure of job {job['id']}: {db_error}")


def drain_calendar_jobs(provider: Optional[GoogleCalendarService] = None) -> int:
    """Background-task entry point: drain the outbox on a fresh connection."""
    with get_db_connection() as conn:
        return CalendarSyncBridge(conn, provider).drain()
