from typing import Any
from fastapi import APIRouter, Body, Depends, status
from sqlmodel import Session

from ..auth import get_current_user
from ..db import get_session
from ..email import Mailer, get_mailer
from ..models import User
from ..serializers import serialize_member
from ..services.invites import InviteService

router = APIRouter()

def get_invite_service(
    session: Session = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
) -> InviteService:
    return InviteService(session, mailer)

@router.post("/projects/{project_id}/invites", status_code=status.HTTP_201_CREATED)
def create_invite(
    project_id: str,
    body: Any = Body(default=None),
    user: User = Depends(get_current_user),
    service: InviteService = Depends(get_invite_service),
):
    result = service.create_invite(project_id, user, body)
    response = {"member": serialize_member(result.member)}
    if result.email_warning:
        response["emailWarning"] = result.email_warning
    return response

@router.post("/invites/accept")
def accept_invites(
    user: User = Depends(get_current_user),
    service: InviteService = Depends(get_invite_service),
):
    members = service.accept_pending_invites_for_user(user)
    return {"members": [serialize_member(m) for m in members]}

@router.get("/projects/{project_id}/members")
def list_members(
    project_id: str,
    user: User = Depends(get_current_user),
    service: InviteService = Depends(get_invite_service),
):
    return {"members": [serialize_member(m) for m in service.list_members(project_id, user)]}

@router.post("/projects/{project_id}/invites/{member_id}/resend")
def resend_invite(
    project_id: str,
    member_id: str,
    user: User = Depends(get_current_user),
    service: InviteService = Depends(get_invite_service),
):
    return {"sent": service.resend_invite(project_id, member_id, user)}

@router.delete("/projects/{project_id}/members/{member_id}")
def remove_member(
    project_id: str,
    member_id: str,
    user: User = Depends(get_current_user),
    service: InviteService = Depends(get_invite_service),
):
    service.remove_member(project_id, member_id, user)
    return {"success": True}
