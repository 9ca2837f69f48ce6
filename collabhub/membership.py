"""
collabhub/membership.py

Membership Manager: who belongs to a project and with what privilege.

Rules enforced here:
- Project names are required and unique per owner (case-insensitive).
- Every project carries its own 8-char invitation code, generated with a
  bounded collision-checked retry loop.
- The owner is always a member, can never be removed and can never lose
  admin rights.
- A user appears at most once per project; the UNIQUE index turns a racing
  double-join into the same "already a member" outcome as the explicit check.

Role checks (who may call what) are the routes' job, via dependencies.py.
"""

from __future__ import annotations

import sqlite3
from typing import List, Optional

from collabhub.config import IS_DEV, MAX_CODE_ATTEMPTS
from collabhub.errors import (
    CodeGenerationError,
    Conflict,
    Forbidden,
    NotFound,
    ValidationFailed,
)
from collabhub.invitations import InvitationLedger
from collabhub.models import Invitation, InvitationStatus, MemberRole, Project, User
from collabhub.projects import ProjectStore

ALREADY_MEMBER = "You are already a member of this project"


class MembershipManager:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.projects = ProjectStore(conn)
        self.invitations = InvitationLedger(conn)

    def get_project(self, project_id: int) -> Project:
        project = self.projects.find_by_id(project_id)
        if project is None:
            raise NotFound("Project not found")
        return project

    # ---------------------------------------------------------
    # Create / update / delete
    # ---------------------------------------------------------
    def _generate_unique_code(self) -> str:
        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            code = self.projects.generate_invitation_code()
            if self.projects.find_by_invitation_code(code) is None:
                return code
            if IS_DEV:
                print(f"[PROJECTS] Invitation code collision on attempt {attempt}")
        raise CodeGenerationError("Failed to generate unique invitation code")

    def create_project(self, name: str, description: Optional[str], owner_id: int) -> Project:
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("Project name is required")

        for existing in self.projects.find_by_owner_id(owner_id):
            if existing.name.lower() == name.lower():
                raise ValidationFailed("You already have a project with this name")

        code = self._generate_unique_code()
        project = self.projects.create(name, (description or "").strip(), code, owner_id)
        print(f"[PROJECTS] Project created: {project.id} by user: {owner_id}")
        return project

    def update_project(
        self,
        project_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Project:
        self.get_project(project_id)
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationFailed("Project name cannot be empty")
        if description is not None:
            description = description.strip()

        project = self.projects.update(project_id, name=name, description=description)
        if project is None:
            raise NotFound("Project not found")
        return project

    def delete_project(self, project_id: int) -> None:
        """Delete a project; members, resources, invitations and tasks go with it."""
        self.get_project(project_id)
        self.projects.delete(project_id)
        print(f"[PROJECTS] Project deleted: {project_id}")

    def get_user_projects(self, user_id: int) -> List[Project]:
        """Owned and member projects, deduplicated, newest first."""
        seen = {}
        for project in self.projects.find_by_owner_id(user_id) + self.projects.find_by_member_id(user_id):
            seen.setdefault(project.id, project)
        return sorted(seen.values(), key=lambda p: (p.created_at, p.id), reverse=True)

    # ---------------------------------------------------------
    # Members
    # ---------------------------------------------------------
    def _add_member(self, project: Project, user_id: int) -> Project:
        if project.has_member(user_id):
            raise ValidationFailed(ALREADY_MEMBER)
        try:
            updated = self.projects.add_member(project.id, user_id, MemberRole.member)
        except Conflict:
            raise ValidationFailed(ALREADY_MEMBER)
        if updated is None:
            raise NotFound("Project not found")
        return updated

    def join_project(self, invitation_code: str, user_id: int) -> Project:
        """Join by the project's own code; per-email invitations are not consulted."""
        code = (invitation_code or "").strip()
        if not code:
            raise ValidationFailed("Invitation code is required")

        project = self.projects.find_by_invitation_code(code)
        if project is None:
            raise NotFound("Error, no project exists with this code")

        updated = self._add_member(project, user_id)
        print(f"[PROJECTS] User {user_id} joined project: {project.id}")
        return updated

    def remove_member(self, project_id: int, member_id: int) -> Project:
        project = self.get_project(project_id)
        if member_id == project.owner_id:
            raise ValidationFailed("Cannot remove project owner")
        if not project.has_member(member_id):
            raise NotFound("Member not found in project")

        updated = self.projects.remove_member(project_id, member_id)
        print(f"[PROJECTS] Member removed from project: {project_id}, memberId: {member_id}")
        return updated

    def set_member_admin(self, project_id: int, user_id: int, admin: bool) -> Project:
        project = self.get_project(project_id)
        member = project.get_member(user_id)
        if member is None:
            raise NotFound("Member not found in project")
        if member.role == MemberRole.owner:
            raise ValidationFailed("Cannot change admin status of project owner")

        role = MemberRole.admin if admin else MemberRole.member
        if member.role == role:
            return project
        return self.projects.set_member_role(project_id, user_id, role)

    def is_user_admin(self, project_id: int, user_id: int) -> bool:
        return self.projects.is_user_admin(project_id, user_id)

    # ---------------------------------------------------------
    # Resources
    # ---------------------------------------------------------
    def add_resource(self, project_id: int, resource_name: str, link: str) -> Project:
        resource_name = (resource_name or "").strip()
        link = (link or "").strip()
        if not resource_name:
            raise ValidationFailed("Resource name is required")
        if not link:
            raise ValidationFailed("Resource link is required")

        self.get_project(project_id)
        return self.projects.add_resource(project_id, resource_name, link)

    def remove_resource(self, project_id: int, index: int) -> Project:
        """Remove the resource at a position in the current list."""
        project = self.get_project(project_id)
        if index < 0 or index >= len(project.resources):
            raise NotFound("Resource not found")
        return self.remove_resource_by_id(project_id, project.resources[index].id)

    def remove_resource_by_id(self, project_id: int, resource_id: int) -> Project:
        self.get_project(project_id)
        if not self.projects.remove_resource(project_id, resource_id):
            raise NotFound("Resource not found")
        return self.get_project(project_id)

    # ---------------------------------------------------------
    # Per-email invitations
    # ---------------------------------------------------------
    def _invitation_for(self, invitation_code: str, user: User) -> Invitation:
        invitation = self.invitations.find_by_invitation_code(invitation_code)
        if invitation is None:
            raise NotFound("Invitation not found")
        if not self.invitations.is_invitation_valid(invitation_code):
            raise ValidationFailed("Invitation is no longer valid")
        if invitation.invited_email != user.email.lower():
            raise Forbidden("This invitation was sent to a different email")
        return invitation

    def accept_invitation(self, invitation_code: str, user: User) -> Project:
        invitation = self._invitation_for(invitation_code, user)
        project = self.get_project(invitation.project_id)
        updated = self._add_member(project, user.id)
        self.invitations.update_status(invitation.id, InvitationStatus.accepted)
        print(f"[INVITATIONS] User {user.id} accepted invitation {invitation.id} to project {project.id}")
        return updated

    def decline_invitation(self, invitation_code: str, user: User) -> Invitation:
        invitation = self._invitation_for(invitation_code, user)
        return self.invitations.update_status(invitation.id, InvitationStatus.declined)
