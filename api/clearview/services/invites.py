import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..config import APP_NAME, APP_URL
from ..email import Mailer, format_sender_name
from ..enums import EDITOR_ROLES, MemberRole, MemberStatus
from ..errors import Conflict, EmailDeliveryError, NotFound, PermissionDenied, ValidationError
from ..models import ProjectMember, User
from ..notifications import invite_email
from ..schemas import InviteCreate, parse_payload
from ..utils import utcnow
from .permissions import get_project, require_editor, resolve_role

logger = logging.getLogger(__name__)


@dataclass
class InviteResult:
    """A created invite, plus the delivery warning when the email did not go out."""
    member: ProjectMember
    email_warning: Optional[str] = None


class InviteService:
    def __init__(self, session: Session, mailer: Optional[Mailer], app_url: str = APP_URL, app_name: str = APP_NAME):
        self.session = session
        self.mailer = mailer
        self.app_url = app_url
        self.app_name = app_name

    def create_invite(self, project_id: str, actor: User, body) -> InviteResult:
        if not project_id:
            raise ValidationError("Project id is required.")
        payload = parse_payload(InviteCreate, body)
        email = payload.email.lower()
        name = payload.name.strip()

        self._ensure_actor_can_invite(project_id, actor, payload.role, email)
        self._ensure_unique_membership(project_id, email)

        member = ProjectMember(
            project_id=project_id,
            email=email,
            role=payload.role,
            status=MemberStatus.pending,
            invited_by=actor.id,
            invited_at=utcnow(),
            full_name=name,
        )
        self.session.add(member)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict("This email is already associated with the project.") from exc
        self.session.refresh(member)
        logger.info("Invited %s to project %s as %s", email, project_id, payload.role.value)

        return InviteResult(member=member, email_warning=self._deliver_invite(member, actor))

    def _ensure_actor_can_invite(self, project_id: str, actor: User, role: MemberRole, target_email: str):
        actor_role = resolve_role(self.session, project_id, actor.id)
        if actor_role not in EDITOR_ROLES:
            raise PermissionDenied("You do not have permission to invite members to this project.")
        if role == MemberRole.owner and actor_role != MemberRole.owner:
            raise PermissionDenied("Only project owners can invite new owners.")
        if (actor.email or "").lower() == target_email:
            raise ValidationError("You cannot send an invite to your own email.")

    def _ensure_unique_membership(self, project_id: str, email: str):
        existing = self.session.exec(
            select(ProjectMember.email).where(ProjectMember.project_id == project_id)
        ).all()
        if any((value or "").lower() == email for value in existing):
            raise Conflict("This email is already associated with the project.")

    def _deliver_invite(self, member: ProjectMember, actor: User) -> Optional[str]:
        if self.mailer is None:
            return None
        project = get_project(self.session, member.project_id)
        subject, html, text = invite_email(member, actor, project, self.app_url, self.app_name)
        try:
            self.mailer.send(
                member.email,
                subject,
                html,
                text,
                sender_name=format_sender_name(actor.full_name),
                reply_to=actor.email,
            )
        except EmailDeliveryError as exc:
            logger.warning("Invite email to %s failed: %s", member.email, exc.message)
            return exc.message
        except Exception:
            logger.exception("Invite email to %s failed", member.email)
            return "Failed to send invite email."
        return None

    def accept_pending_invites_for_user(self, user: User) -> List[ProjectMember]:
        email = (user.email or "").strip().lower()
        if not email:
            raise ValidationError("User email is required to accept invites.")
        pending = (
            ProjectMember.email == email,
            ProjectMember.user_id.is_(None),
            ProjectMember.status == MemberStatus.pending,
        )
        ids = self.session.exec(select(ProjectMember.id).where(*pending)).all()
        if not ids:
            return []
        self.session.exec(
            update(ProjectMember)
            .where(ProjectMember.id.in_(ids), *pending)
            .values(
                user_id=user.id,
                status=MemberStatus.accepted,
                accepted_at=utcnow(),
                full_name=user.full_name or user.email,
            )
        )
        self.session.commit()
        members = self.session.exec(
            select(ProjectMember).where(ProjectMember.id.in_(ids), ProjectMember.user_id == user.id)
        ).all()
        logger.info("Accepted %d pending invite(s) for %s", len(members), email)
        return list(members)

    def list_members(self, project_id: str, actor: User) -> List[ProjectMember]:
        resolve_role(self.session, project_id, actor.id)
        return list(self.session.exec(
            select(ProjectMember)
            .where(ProjectMember.project_id == project_id)
            .order_by(ProjectMember.invited_at)
        ).all())

    def _get_member(self, project_id: str, member_id: str) -> ProjectMember:
        member = self.session.get(ProjectMember, member_id)
        if not member or member.project_id != project_id:
            raise NotFound("Project member not found.")
        return member

    def resend_invite(self, project_id: str, member_id: str, actor: User) -> bool:
        require_editor(self.session, project_id, actor.id, "invite members to this project")
        member = self._get_member(project_id, member_id)
        if member.status != MemberStatus.pending:
            raise Conflict("This invite has already been accepted.")
        if self.mailer is None:
            return False
        project = get_project(self.session, project_id)
        subject, html, text = invite_email(member, actor, project, self.app_url, self.app_name)
        self.mailer.send(member.email, subject, html, text, sender_name=format_sender_name(actor.full_name))
        return True

    def remove_member(self, project_id: str, member_id: str, actor: User) -> None:
        actor_role = require_editor(self.session, project_id, actor.id, "remove members from this project")
        member = self._get_member(project_id, member_id)
        project = get_project(self.session, project_id)
        if member.user_id and member.user_id == project.user_id:
            raise PermissionDenied("The project creator cannot be removed.")
        if member.role == MemberRole.owner and actor_role != MemberRole.owner:
            raise PermissionDenied("Only project owners can remove owners.")
        self.session.delete(member)
        self.session.commit()
