"""
collabhub/routes_projects.py

Project, membership and resource endpoints.

Authorization (via require_project_role):
- Any member: view, add/remove resources, list tasks
- Owner or admin: update name/description, remove members
- Owner only: delete, grant/revoke admin

Responses use {"message": ..., "data": ...}; errors are CollabHubError
subclasses rendered by the handler in main.py.
"""

from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends

from collabhub.auth_context import AuthContext, require_auth_context
from collabhub.calendar_service import GoogleCalendarService
from collabhub.calendar_sync import CalendarSyncBridge
from collabhub.config import IS_DEV
from collabhub.dependencies import ProjectAccess, get_calendar_provider, get_conn, require_project_role
from collabhub.membership import MembershipManager
from collabhub.models import MemberRole
from collabhub.schemas import (
    JoinProjectRequest,
    MemberAdminRequest,
    ProjectCreateRequest,
    ProjectEnvelope,
    ProjectListEnvelope,
    ProjectResponse,
    ProjectUpdateRequest,
    ResourceCreateRequest,
)
from collabhub.tasks import TaskStore

router = APIRouter(
    prefix="/projects",
    tags=["projects"],
)


def _envelope(message: str, project, viewer_id: int) -> ProjectEnvelope:
    return ProjectEnvelope(message=message, data=ProjectResponse.for_viewer(project, viewer_id))


@router.post("", response_model=ProjectEnvelope, status_code=201)
def create_project(
    request: ProjectCreateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
) -> ProjectEnvelope:
    """
    Create a project owned by the caller.

    Raises:
        ValidationFailed(400): Empty name, or the caller already owns a project with this name
        CodeGenerationError(500): No unique invitation code after 10 attempts
    """
    project = MembershipManager(conn).create_project(request.name, request.description, ctx.user_id)
    return _envelope("Project created successfully", project, ctx.user_id)


@router.get("", response_model=ProjectListEnvelope)
def list_my_projects(
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
) -> ProjectListEnvelope:
    """Projects the caller owns or belongs to, newest first."""
    projects = MembershipManager(conn).get_user_projects(ctx.user_id)
    if IS_DEV:
        print(f"[PROJECTS] Retrieved {len(projects)} projects for user: {ctx.user_id}")
    return ProjectListEnvelope(
        message="Projects retrieved successfully",
        data=[ProjectResponse.for_viewer(p, ctx.user_id) for p in projects],
    )


@router.post("/join", response_model=ProjectEnvelope)
def join_project(
    request: JoinProjectRequest,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
) -> ProjectEnvelope:
    """
    Join a project with its invitation code.

    Raises:
        ValidationFailed(400): Blank code, or already a member
        NotFound(404): No project has this code
    """
    project = MembershipManager(conn).join_project(request.invitation_code, ctx.user_id)
    return _envelope("Successfully joined project", project, ctx.user_id)


@router.get("/{project_id}", response_model=ProjectEnvelope)
def get_project(access: ProjectAccess = Depends(require_project_role())) -> ProjectEnvelope:
    return _envelope("Project retrieved successfully", access.project, access.ctx.user_id)


@router.put("/{project_id}", response_model=ProjectEnvelope)
def update_project(
    project_id: int,
    request: ProjectUpdateRequest,
    access: ProjectAccess = Depends(
        require_project_role(MemberRole.admin, "Only project owner or admin can update project")
    ),
    conn: sqlite3.Connection = Depends(get_conn),
) -> ProjectEnvelope:
    project = MembershipManager(conn).update_project(
        project_id, name=request.name, description=request.description
    )
    return _envelope("Project updated successfully", project, access.ctx.user_id)


@router.delete("/{project_id}")
def delete_project(
    project_id: int,
    access: ProjectAccess = Depends(
        require_project_role(MemberRole.owner, "Only project owner can delete project")
    ),
    conn: sqlite3.Connection = Depends(get_conn),
    provider: GoogleCalendarService = Depends(get_calendar_provider),
) -> dict:
    """Delete a project; calendar events of its tasks are removed first."""
    bridge = CalendarSyncBridge(conn, provider)
    for task in TaskStore(conn).find_by_project_id(project_id):
        bridge.remove_task(task)

    MembershipManager(conn).delete_project(project_id)
    return {"message": "Project deleted successfully"}


# ---------------------------------------------------------
# Resources
# ---------------------------------------------------------
@router.post("/{project_id}/resources", response_model=ProjectEnvelope)
def add_resource(
    project_id: int,
    request: ResourceCreateRequest,
    access: ProjectAccess = Depends(require_project_role()),
    conn: sqlite3.Connection = Depends(get_conn),
) -> ProjectEnvelope:
    project = MembershipManager(conn).add_resource(project_id, request.resource_name, request.link)
    return _envelope("Resource added successfully", project, access.ctx.user_id)


@router.delete("/{project_id}/resources/{resource_id}", response_model=ProjectEnvelope)
def remove_resource(
    project_id: int,
    resource_id: int,
    access: ProjectAccess = Depends(require_project_role()),
    conn: sqlite3.Connection = Depends(get_conn),
) -> ProjectEnvelope:
    project = MembershipManager(conn).remove_resource_by_id(project_id, resource_id)
    return _envelope("Resource removed successfully", project, access.ctx.user_id)


# ---------------------------------------------------------
# Members
# ---------------------------------------------------------
@router.delete("/{project_id}/members/{user_id}", response_model=ProjectEnvelope)
def remove_member(
    project_id: int,
    user_id: int,
    access: ProjectAccess = Depends(
        require_project_role(MemberRole.admin, "Only project owner or admin can remove members")
    ),
    conn: sqlite3.Connection = Depends(get_conn),
) -> ProjectEnvelope:
    """
    Remove a member.

    Raises:
        ValidationFailed(400): Target is the owner
        NotFound(404): Target is not a member
    """
    project = MembershipManager(conn).remove_member(project_id, user_id)
    return _envelope("Member removed successfully", project, access.ctx.user_id)


@router.put("/{project_id}/members/{user_id}/admin", response_model=ProjectEnvelope)
def set_member_admin(
    project_id: int,
    user_id: int,
    request: MemberAdminRequest,
    access: ProjectAccess = Depends(
        require_project_role(MemberRole.owner, "Only project owner can change admin rights")
    ),
    conn: sqlite3.Connection = Depends(get_conn),
) -> ProjectEnvelope:
    project = MembershipManager(conn).set_member_admin(project_id, user_id, request.admin)
    return _envelope("Member updated successfully", project, access.ctx.user_id)
