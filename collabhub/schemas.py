"""
collabhub/schemas.py

Pydantic request/response schemas for the REST surface.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, Field, validator

from collabhub.models import Invitation, Member, Project, Resource, Task, User


def _trim(v):
    if isinstance(v, str):
        return v.strip()
    return v


# ========================================================================
# AUTH
# ========================================================================

class AuthRequest(BaseModel):
    id_token: str = Field(..., min_length=1, description="Google ID token")


class UserResponse(BaseModel):
    """Public user profile (never includes the calendar refresh token)."""
    id: int
    email: str
    name: str
    profile_picture: Optional[str] = None
    bio: Optional[str] = None
    calendar_enabled: bool = False

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            profile_picture=user.profile_picture,
            bio=user.bio,
            calendar_enabled=user.calendar_enabled,
        )


class AuthData(BaseModel):
    token: str
    user: UserResponse


class AuthResponse(BaseModel):
    message: str
    data: AuthData


# ========================================================================
# PROJECT SCHEMAS
# ========================================================================

class ProjectCreateRequest(BaseModel):
    """Name emptiness and per-owner uniqueness are checked by the membership manager."""
    name: str = Field(..., max_length=200, description="Project name")
    description: Optional[str] = Field(None, max_length=2000, description="Project description")


class ProjectUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=200, description="New project name")
    description: Optional[str] = Field(None, max_length=2000, description="New project description")


class JoinProjectRequest(BaseModel):
    invitation_code: str = Field("", max_length=32, description="Project invitation code")


class ResourceCreateRequest(BaseModel):
    resource_name: str = Field("", max_length=200, description="Display name of the resource")
    link: str = Field("", max_length=2000, description="URL of the resource")


class MemberAdminRequest(BaseModel):
    admin: bool = Field(..., description="Grant (true) or revoke (false) admin rights")


class MemberResponse(BaseModel):
    """Member as clients see it: owner/user plus an admin flag."""
    user_id: int
    role: str = Field(..., description="'owner' or 'user'")
    admin: bool
    joined_at: datetime

    @classmethod
    def from_member(cls, member: Member) -> "MemberResponse":
        return cls(
            user_id=member.user_id,
            role=member.display_role,
            admin=member.admin,
            joined_at=member.joined_at,
        )


class ResourceResponse(BaseModel):
    id: int
    resource_name: str
    link: str
    created_at: datetime

    @classmethod
    def from_resource(cls, resource: Resource) -> "ResourceResponse":
        return cls(**resource.dict())


class ProjectResponse(BaseModel):
    id: int
    name: str
    description: str
    invitation_code: str
    owner_id: int
    members: List[MemberResponse] = Field(default_factory=list)
    resources: List[ResourceResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    is_owner: bool = False
    is_admin: bool = False

    @classmethod
    def for_viewer(cls, project: Project, viewer_id: int) -> "ProjectResponse":
        member = project.get_member(viewer_id)
        return cls(
            id=project.id,
            name=project.name,
            description=project.description,
            invitation_code=project.invitation_code,
            owner_id=project.owner_id,
            members=[MemberResponse.from_member(m) for m in project.members],
            resources=[ResourceResponse.from_resource(r) for r in project.resources],
            created_at=project.created_at,
            updated_at=project.updated_at,
            is_owner=project.owner_id == viewer_id,
            is_admin=member is not None and member.admin,
        )


class ProjectEnvelope(BaseModel):
    message: str
    data: Optional[ProjectResponse] = None


class ProjectListEnvelope(BaseModel):
    message: str
    data: List[ProjectResponse] = Field(default_factory=list)


# ========================================================================
# INVITATION SCHEMAS
# ========================================================================

class InvitationCreateRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320, description="Email address to invite")
    expires_in_days: int = Field(7, ge=1, le=30, description="Days until the invitation expires")

    @validator("email", pre=True)
    def normalize_email(cls, v):
        v = _trim(v)
        return v.lower() if isinstance(v, str) else v

    @validator("email")
    def validate_email_shape(cls, v):
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("email must be a valid email address")
        return v


class InvitationResponse(BaseModel):
    id: int
    project_id: int
    invitation_code: str
    invited_email: str
    invited_by: int
    role: str
    status: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_invitation(cls, invitation: Invitation) -> "InvitationResponse":
        data = invitation.dict()
        data["status"] = invitation.status.value
        return cls(**data)


class InvitationCheckResponse(BaseModel):
    valid: bool
    invitation: Optional[InvitationResponse] = None


# ========================================================================
# TASK SCHEMAS
# ========================================================================

class TaskCreateRequest(BaseModel):
    """
    Assignees may be user ids or display names; status accepts UI labels
    ("In Progress") as well as canonical values ("in_progress").
    """
    title: str = Field(..., max_length=200, description="Task title")
    description: Optional[str] = Field(None, max_length=2000, description="Task description")
    status: str = Field("Not Started", description="Status label or value")
    assignees: List[Union[int, str]] = Field(..., description="User ids or display names")
    deadline: Optional[datetime] = Field(None, description="Deadline (ISO timestamp)")

    @validator("title", pre=True)
    def trim_title(cls, v):
        return _trim(v)

    @validator("title")
    def validate_title_non_empty(cls, v):
        if not v:
            raise ValueError("title must not be empty")
        return v


class TaskUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    status: Optional[str] = None
    assignees: Optional[List[Union[int, str]]] = None
    deadline: Optional[datetime] = None


class TaskResponse(BaseModel):
    id: int
    project_id: int
    title: str
    description: Optional[str] = None
    status: str
    assignees: List[int]
    created_by: int
    deadline: Optional[datetime] = None
    calendar_event_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            project_id=task.project_id,
            title=task.title,
            description=task.description,
            status=task.status.value,
            assignees=task.assignees,
            created_by=task.created_by,
            deadline=task.deadline,
            calendar_event_id=task.calendar_event_id,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )


class TaskEnvelope(BaseModel):
    success: bool = True
    data: Optional[TaskResponse] = None
    message: Optional[str] = None


class TaskListEnvelope(BaseModel):
    success: bool = True
    data: List[TaskResponse] = Field(default_factory=list)
    count: int = 0


# ========================================================================
# CALENDAR SCHEMAS
# ========================================================================

class CalendarStatusResponse(BaseModel):
    connected: bool
    enabled: bool
    configured: bool
