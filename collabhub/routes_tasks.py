"""
collabhub/routes_tasks.py

Task endpoints.

Calendar sync never runs inside the request: a mutation that carries a
deadline enqueues an outbox job and schedules drain_calendar_jobs as a
background task, so calendar failures can neither slow down nor fail the
response. Deletion is the exception: stored events are removed inline,
before the task row is deleted, because the event ids go with it.

Responses use {"success": ..., "data": ...}.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from collabhub.auth_context import AuthContext, require_auth_context
from collabhub.calendar_service import GoogleCalendarService
from collabhub.calendar_sync import CalendarSyncBridge, drain_calendar_jobs
from collabhub.config import IS_DEV
from collabhub.dependencies import ProjectAccess, get_calendar_provider, get_conn, require_project_role
from collabhub.errors import Forbidden, NotFound, StorageError
from collabhub.models import Task
from collabhub.projects import ProjectStore
from collabhub.schemas import TaskCreateRequest, TaskEnvelope, TaskListEnvelope, TaskResponse, TaskUpdateRequest
from collabhub.tasks import TaskStore, map_status_label

router = APIRouter(tags=["tasks"])

# Nullable columns a PUT may reset with an explicit null
CLEARABLE_FIELDS = ("description", "deadline")


def _schedule_sync(
    conn: sqlite3.Connection,
    task: Task,
    background_tasks: BackgroundTasks,
    provider: GoogleCalendarService,
) -> None:
    # The task mutation is already committed here
    try:
        CalendarSyncBridge(conn, provider).enqueue(task.id)
    except StorageError as e:
        print(f"[CALENDAR] Sync not scheduled for task {task.id}: {e.message}")
        return
    background_tasks.add_task(drain_calendar_jobs, provider)


def _task_for_member(conn: sqlite3.Connection, task_id: int, ctx: AuthContext) -> Task:
    task = TaskStore(conn).find_by_id(task_id)
    if task is None:
        raise NotFound("Task not found")
    project = ProjectStore(conn).find_by_id(task.project_id)
    if project is None or not project.has_member(ctx.user_id):
        raise Forbidden("Access denied to this task")
    return task


@router.post("/projects/{project_id}/tasks", response_model=TaskEnvelope, status_code=201)
def create_task(
    project_id: int,
    request: TaskCreateRequest,
    background_tasks: BackgroundTasks,
    access: ProjectAccess = Depends(require_project_role()),
    conn: sqlite3.Connection = Depends(get_conn),
    provider: GoogleCalendarService = Depends(get_calendar_provider),
) -> TaskEnvelope:
    """
    Create a task in a project (any member).

    Raises:
        ValidationFailed(400): Missing title/assignees, or an assignee name
            that matches no user or more than one user
    """
    store = TaskStore(conn)
    assignees = store.resolve_assignees(request.assignees)
    task = store.create(
        project_id=project_id,
        title=request.title,
        assignees=assignees,
        status=map_status_label(request.status),
        created_by=access.ctx.user_id,
        deadline=request.deadline,
        description=request.description,
    )

    if task.deadline is not None:
        _schedule_sync(conn, task, background_tasks, provider)

    return TaskEnvelope(success=True, data=TaskResponse.from_task(task))


@router.get("/projects/{project_id}/tasks", response_model=TaskListEnvelope)
def list_project_tasks(
    project_id: int,
    status: Optional[str] = Query(None, description="Filter by status label or value"),
    access: ProjectAccess = Depends(require_project_role()),
    conn: sqlite3.Connection = Depends(get_conn),
) -> TaskListEnvelope:
    store = TaskStore(conn)
    if status:
        tasks = store.find_by_status(map_status_label(status), project_id)
    else:
        tasks = store.find_by_project_id(project_id)
    if IS_DEV:
        print(f"[TASKS] Retrieved {len(tasks)} tasks for project {project_id}")
    return TaskListEnvelope(data=[TaskResponse.from_task(t) for t in tasks], count=len(tasks))


@router.get("/tasks/upcoming", response_model=TaskListEnvelope)
def upcoming_tasks(
    days: int = Query(7, ge=1, le=365, description="Look-ahead window in days"),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
) -> TaskListEnvelope:
    """Unfinished tasks due within the window, across the caller's projects."""
    project_ids = {p.id for p in ProjectStore(conn).find_by_member_id(ctx.user_id)}
    tasks = [t for t in TaskStore(conn).find_upcoming_deadlines(days) if t.project_id in project_ids]
    return TaskListEnvelope(data=[TaskResponse.from_task(t) for t in tasks], count=len(tasks))


@router.get("/tasks/{task_id}", response_model=TaskEnvelope)
def get_task(
    task_id: int,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
) -> TaskEnvelope:
    task = _task_for_member(conn, task_id, ctx)
    return TaskEnvelope(data=TaskResponse.from_task(task))


@router.put("/tasks/{task_id}", response_model=TaskEnvelope)
def update_task(
    task_id: int,
    request: TaskUpdateRequest,
    background_tasks: BackgroundTasks,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
    provider: GoogleCalendarService = Depends(get_calendar_provider),
) -> TaskEnvelope:
    """
    Update a task. Calendar sync is scheduled when the deadline or the
    assignee list changed and the task has a deadline.

    An explicit null clears description or deadline; clearing the deadline
    removes the task's calendar events. Null title, status or assignees are
    ignored.
    """
    _task_for_member(conn, task_id, ctx)
    store = TaskStore(conn)

    fields = {
        k: v
        for k, v in request.dict(exclude_unset=True).items()
        if v is not None or k in CLEARABLE_FIELDS
    }
    if "assignees" in fields:
        fields["assignees"] = store.resolve_assignees(fields["assignees"])

    task = store.update(task_id, **fields)
    if task is None:
        raise NotFound("Task not found")

    if task.deadline is None:
        if "deadline" in fields:
            CalendarSyncBridge(conn, provider).remove_task(task)
    elif "deadline" in fields or "assignees" in fields:
        _schedule_sync(conn, task, background_tasks, provider)

    return TaskEnvelope(data=TaskResponse.from_task(task))


@router.delete("/tasks/{task_id}", response_model=TaskEnvelope)
def delete_task(
    task_id: int,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
    provider: GoogleCalendarService = Depends(get_calendar_provider),
) -> TaskEnvelope:
    task = _task_for_member(conn, task_id, ctx)
    CalendarSyncBridge(conn, provider).remove_task(task)
    TaskStore(conn).delete(task_id)
    print(f"[TASKS] Task deleted: {task_id}")
    return TaskEnvelope(message="Task deleted successfully")
