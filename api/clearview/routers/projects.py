from typing import Any
from fastapi import APIRouter, Body, Depends, status
from sqlmodel import Session

from ..auth import get_current_user
from ..db import get_session
from ..models import User
from ..serializers import serialize_client_profile, serialize_project, sanitize_client_profile
from ..services import projects as project_service

router = APIRouter()

@router.post("", status_code=status.HTTP_201_CREATED)
def create_project(
    body: Any = Body(default=None),
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    project = project_service.create_project(session, user, body)
    return {"project": serialize_project(project)}

@router.get("")
def list_projects(
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    return {"projects": [serialize_project(p) for p in project_service.list_projects(session, user)]}

@router.delete("/{project_id}")
def delete_project(
    project_id: str,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    project_service.delete_project(session, user, project_id)
    return {"success": True}

@router.get("/{project_id}/client-profile")
def get_client_profile(
    project_id: str,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    profile = project_service.get_client_profile(session, user, project_id)
    if profile is None:
        return {"clientProfile": {"projectId": project_id, **sanitize_client_profile(None)}}
    return {"clientProfile": serialize_client_profile(profile)}

@router.put("/{project_id}/client-profile")
def update_client_profile(
    project_id: str,
    body: Any = Body(default=None),
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    profile = project_service.upsert_client_profile(session, user, project_id, body)
    return {"clientProfile": serialize_client_profile(profile)}
