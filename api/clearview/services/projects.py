import logging
from typing import List, Optional

from sqlalchemy import delete, or_
from sqlmodel import Session, select

from ..enums import MemberStatus
from ..errors import PermissionDenied
from ..models import (
    ChangeOrder,
    ChangeOrderLink,
    ChangeOrderRecipient,
    ClientProfile,
    Project,
    ProjectMember,
    User,
)
from ..schemas import ClientProfileUpdate, ProjectCreate, parse_payload
from ..utils import utcnow
from .permissions import get_project, require_editor, require_member

logger = logging.getLogger(__name__)


def create_project(session: Session, actor: User, body) -> Project:
    payload = parse_payload(ProjectCreate, body, "Project name is required.")
    project = Project(user_id=actor.id, **payload.model_dump(exclude_none=True))
    session.add(project)
    session.commit()
    session.refresh(project)
    logger.info("Created project %s for %s", project.id, actor.email)
    return project


def list_projects(session: Session, actor: User) -> List[Project]:
    """Projects the user created or holds an accepted membership on."""
    member_of = select(ProjectMember.project_id).where(
        ProjectMember.user_id == actor.id,
        ProjectMember.status == MemberStatus.accepted,
    )
    return list(session.exec(
        select(Project)
        .where(or_(Project.user_id == actor.id, Project.id.in_(member_of)))
        .order_by(Project.created_at.desc())
    ).all())


def delete_project(session: Session, actor: User, project_id: str) -> None:
    project = get_project(session, project_id)
    if project.user_id != actor.id:
        raise PermissionDenied("Only the project creator can delete this project.")
    change_orders = select(ChangeOrder.id).where(ChangeOrder.project_id == project.id)
    session.exec(delete(ChangeOrderLink).where(ChangeOrderLink.change_order_id.in_(change_orders)))
    session.exec(delete(ChangeOrderRecipient).where(ChangeOrderRecipient.change_order_id.in_(change_orders)))
    session.exec(delete(ChangeOrder).where(ChangeOrder.project_id == project.id))
    session.exec(delete(ProjectMember).where(ProjectMember.project_id == project.id))
    session.exec(delete(ClientProfile).where(ClientProfile.project_id == project.id))
    session.delete(project)
    session.commit()
    logger.info("Deleted project %s", project_id)


def get_client_profile(session: Session, actor: User, project_id: str) -> Optional[ClientProfile]:
    require_member(session, project_id, actor.id)
    return session.exec(select(ClientProfile).where(ClientProfile.project_id == project_id)).first()


def upsert_client_profile(session: Session, actor: User, project_id: str, body) -> ClientProfile:
    require_editor(session, project_id, actor.id, "edit the client profile")
    payload = parse_payload(ClientProfileUpdate, body)
    profile = session.exec(select(ClientProfile).where(ClientProfile.project_id == project_id)).first()
    if profile is None:
        profile = ClientProfile(project_id=project_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(profile, key, (value or "").strip())
    profile.updated_at = utcnow()
    session.add(profile)
    session.commit()
    session.refresh(profile)
    return profile
