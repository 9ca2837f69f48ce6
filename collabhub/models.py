from pydantic import BaseModel, Field
from typing import Dict, List, Literal, Optional
from datetime import datetime
from enum import Enum

# Enums
class MemberRole(str, Enum):
    owner = "owner"
    admin = "admin"
    member = "member"

class InvitationStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"
    expired = "expired"

class TaskStatus(str, Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    completed = "completed"
    blocked = "blocked"
    backlog = "backlog"

# Models
class User(BaseModel):
    id: int
    google_id: str
    email: str
    name: str
    profile_picture: Optional[str] = None
    bio: Optional[str] = None
    calendar_enabled: bool = False
    calendar_refresh_token: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def calendar_sync_enabled(self) -> bool:
        return bool(self.calendar_enabled and self.calendar_refresh_token)

class Member(BaseModel):
    user_id: int
    role: MemberRole = MemberRole.member
    joined_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def admin(self) -> bool:
        return self.role in (MemberRole.owner, MemberRole.admin)

    @property
    def display_role(self) -> str:
        # Clients only distinguish the owner from everyone else
        return "owner" if self.role == MemberRole.owner else "user"

class Resource(BaseModel):
    id: int
    resource_name: str
    link: str
    created_at: datetime = Field(default_factory=datetime.utcnow)

class Project(BaseModel):
    id: int
    name: str
    description: str = ""
    invitation_code: str
    owner_id: int
    members: List[Member] = Field(default_factory=list)
    resources: List[Resource] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def get_member(self, user_id: int) -> Optional[Member]:
        for member in self.members:
            if member.user_id == user_id:
                return member
        return None

    def has_member(self, user_id: int) -> bool:
        return self.get_member(user_id) is not None

class Invitation(BaseModel):
    id: int
    project_id: int
    invitation_code: str
    invited_email: str
    invited_by: int
    role: Literal["user"] = "user"
    status: InvitationStatus = InvitationStatus.pending
    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """Pending and not yet expired; stored status alone is never enough."""
        now = now or datetime.utcnow()
        return self.status == InvitationStatus.pending and self.expires_at > now

class Task(BaseModel):
    id: int
    project_id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.not_started
    assignees: List[int] = Field(default_factory=list)
    created_by: int
    deadline: Optional[datetime] = None
    calendar_events: Dict[int, str] = Field(default_factory=dict)  # assignee user_id -> external event id
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def calendar_event_id(self) -> Optional[str]:
        """First event id stored for this task (scalar view of calendar_events)."""
        for event_id in self.calendar_events.values():
            return event_id
        return None
