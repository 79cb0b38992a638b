from sqlmodel import Session, select

from ..enums import EDITOR_ROLES, MemberRole, MemberStatus
from ..errors import NotFound, PermissionDenied
from ..models import Project, ProjectMember


def get_project(session: Session, project_id: str) -> Project:
    project = session.get(Project, project_id) if project_id else None
    if not project:
        raise NotFound("Project not found.")
    return project


def resolve_role(session: Session, project_id: str, user_id: str) -> MemberRole:
    """Effective role of ``user_id`` on the project.

    The creating user is always owner. Anyone else needs an accepted
    membership row; pending invites grant nothing. A missing project is
    reported the same way as a missing membership so ids cannot be probed.
    """
    project = session.get(Project, project_id) if project_id else None
    if not project:
        raise PermissionDenied("You do not have access to this project.")
    if project.user_id == user_id:
        return MemberRole.owner
    membership = session.exec(
        select(ProjectMember).where(
            ProjectMember.project_id == project_id,
            ProjectMember.user_id == user_id,
        )
    ).first()
    if not membership or membership.status != MemberStatus.accepted:
        raise PermissionDenied("You do not have access to this project.")
    return membership.role


def require_member(session: Session, project_id: str, user_id: str) -> MemberRole:
    return resolve_role(session, project_id, user_id)


def require_editor(session: Session, project_id: str, user_id: str, action: str = "manage this project") -> MemberRole:
    role = resolve_role(session, project_id, user_id)
    if role not in EDITOR_ROLES:
        raise PermissionDenied(f"You do not have permission to {action}.")
    return role
