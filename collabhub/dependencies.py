"""
collabhub/dependencies.py

Reusable FastAPI dependencies: per-request connection, external providers,
and project role guards.
"""

from __future__ import annotations

import sqlite3
from typing import Callable, Generator, Optional

from fastapi import Depends
from pydantic import BaseModel

from collabhub.auth_context import AuthContext, require_auth_context
from collabhub.calendar_service import GoogleCalendarService
from collabhub.config import IS_DEV
from collabhub.db import get_db
from collabhub.errors import Forbidden, NotFound
from collabhub.identity import verify_google_id_token
from collabhub.models import Member, MemberRole, Project
from collabhub.projects import ProjectStore
from collabhub.rbac import role_at_least

_calendar_provider: Optional[GoogleCalendarService] = None


def get_conn() -> Generator[sqlite3.Connection, None, None]:
    """One connection per request, closed after the response."""
    conn = get_db()
    try:
        yield conn
    finally:
        conn.close()


def get_calendar_provider() -> GoogleCalendarService:
    global _calendar_provider
    if _calendar_provider is None:
        _calendar_provider = GoogleCalendarService()
    return _calendar_provider


def get_identity_verifier() -> Callable:
    return verify_google_id_token


class ProjectAccess(BaseModel):
    """A project together with the caller's membership in it."""
    project: Project
    member: Member
    ctx: AuthContext


def require_project_role(
    minimum: MemberRole = MemberRole.member,
    detail: str = "Access denied to this project",
) -> Callable:
    """
    FastAPI dependency factory for project-scoped role checks.

    Usage in routes:
        @router.delete("/{project_id}")
        def delete_project(access: ProjectAccess = Depends(require_project_role(MemberRole.owner))):
            ...

    Args:
        minimum: Lowest role allowed through (member < admin < owner)
        detail: Message used when the caller is a member with too low a role

    Raises:
        NotFound(404): Project does not exist
        Forbidden(403): Caller is not a member, or their role is too low
    """
    def _check_project_role(
        project_id: int,
        ctx: AuthContext = Depends(require_auth_context),
        conn: sqlite3.Connection = Depends(get_conn),
    ) -> ProjectAccess:
        project = ProjectStore(conn).find_by_id(project_id)
        if project is None:
            raise NotFound("Project not found")

        member = project.get_member(ctx.user_id)
        if member is None:
            if IS_DEV:
                print(f"[AUTHZ] Non-member denied: project_id={project_id}, user_id={ctx.user_id}")
            raise Forbidden("Access denied to this project")

        if not role_at_least(member.role, minimum):
            if IS_DEV:
                print(f"[AUTHZ] Role denied: project_id={project_id}, user_id={ctx.user_id}, "
                      f"role={member.role.value}, required={minimum.value}")
            raise Forbidden(detail)

        return ProjectAccess(project=project, member=member, ctx=ctx)

    return _check_project_role
