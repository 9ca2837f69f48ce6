"""
collabhub/routes_invitations.py

Per-email invitation endpoints (the Invitation Ledger).

These are separate from a project's own invitation code used by
POST /projects/join: an invitation is addressed to one email and can only be
accepted or declined by the user signed in with that email.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from collabhub.auth_context import AuthContext, require_auth_context
from collabhub.config import IS_DEV
from collabhub.dependencies import ProjectAccess, get_conn, require_project_role
from collabhub.errors import NotFound
from collabhub.invitations import InvitationLedger
from collabhub.membership import MembershipManager
from collabhub.models import InvitationStatus
from collabhub.schemas import (
    InvitationCheckResponse,
    InvitationCreateRequest,
    InvitationResponse,
    ProjectEnvelope,
    ProjectResponse,
)
from collabhub.users import UserStore

router = APIRouter(tags=["invitations"])


@router.post("/projects/{project_id}/invitations", status_code=201)
def create_invitation(
    project_id: int,
    request: InvitationCreateRequest,
    access: ProjectAccess = Depends(require_project_role()),
    conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
    """Invite an email address to the project (any member may invite)."""
    invitation = InvitationLedger(conn).create_invitation(
        project_id, request.email, access.ctx.user_id, request.expires_in_days
    )
    return {
        "message": "Invitation created successfully",
        "data": InvitationResponse.from_invitation(invitation),
    }


@router.get("/projects/{project_id}/invitations")
def list_invitations(
    project_id: int,
    status: Optional[InvitationStatus] = Query(None, description="Filter by status"),
    access: ProjectAccess = Depends(require_project_role()),
    conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
    ledger = InvitationLedger(conn)
    if status is None:
        invitations = ledger.find_by_project_id(project_id)
    else:
        invitations = ledger.find_by_status(status, project_id)
    return {
        "message": "Invitations retrieved successfully",
        "data": [InvitationResponse.from_invitation(i) for i in invitations],
    }


@router.post("/invitations/cleanup")
def cleanup_invitations(
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
    """Expire every pending invitation past its expiry (dev/testing only)."""
    if not IS_DEV:
        raise HTTPException(status_code=403, detail="Invitation cleanup only available in dev")

    expired = InvitationLedger(conn).cleanup_expired_invitations()
    print(f"[INVITATIONS] Cleanup by user {ctx.user_id}: {expired} expired")
    return {"message": "Expired invitations cleaned up", "expired": expired}


@router.get("/invitations/{invitation_code}", response_model=InvitationCheckResponse)
def check_invitation(
    invitation_code: str,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
) -> InvitationCheckResponse:
    ledger = InvitationLedger(conn)
    invitation = ledger.find_by_invitation_code(invitation_code)
    if invitation is None:
        raise NotFound("Invitation not found")
    return InvitationCheckResponse(
        valid=ledger.is_invitation_valid(invitation_code),
        invitation=InvitationResponse.from_invitation(invitation),
    )


@router.post("/invitations/{invitation_code}/accept", response_model=ProjectEnvelope)
def accept_invitation(
    invitation_code: str,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
) -> ProjectEnvelope:
    """
    Accept an invitation addressed to the caller's email and join the project.

    Raises:
        NotFound(404): Unknown code
        ValidationFailed(400): Not pending or expired, or already a member
        Forbidden(403): Invitation was sent to another email
    """
    user = UserStore(conn).find_by_id(ctx.user_id)
    project = MembershipManager(conn).accept_invitation(invitation_code, user)
    return ProjectEnvelope(
        message="Invitation accepted",
        data=ProjectResponse.for_viewer(project, ctx.user_id),
    )


@router.post("/invitations/{invitation_code}/decline")
def decline_invitation(
    invitation_code: str,
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
    user = UserStore(conn).find_by_id(ctx.user_id)
    invitation = MembershipManager(conn).decline_invitation(invitation_code, user)
    return {
        "message": "Invitation declined",
        "data": InvitationResponse.from_invitation(invitation),
    }
