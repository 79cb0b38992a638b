"""Change-order lifecycle: create, send, client verify/respond, review, delete.

Client-facing operations authenticate with a single-use token instead of a
session. A token is consumed with a conditional UPDATE (``status = pending``)
whose affected-row count must be exactly one. The claim and the change-order
update it authorises commit together.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional
from urllib.parse import urlencode

from sqlalchemy import delete, update
from sqlmodel import Session, select

from ..config import (
    APP_URL,
    CHANGE_ORDER_CLIENT_URL_BASE,
    CHANGE_ORDER_LINK_TTL_DAYS,
    CHANGE_ORDER_RESPOND_BASE_URL,
)
from ..email import Mailer
from ..enums import (
    ACTION_STATUS,
    DECISION_STATUS,
    ChangeOrderStatus,
    ClientDecision,
    LinkStatus,
    MemberRole,
    MemberStatus,
    aggregate_recipient_status,
    can_transition,
)
from ..errors import Conflict, EmailDeliveryError, Gone, NotFound, ValidationError
from ..models import (
    ChangeOrder,
    ChangeOrderLink,
    ChangeOrderRecipient,
    ClientProfile,
    Project,
    ProjectMember,
    User,
)
from ..notifications import (
    change_order_client_email,
    change_order_recipient_email,
    client_decision_summary,
)
from ..schemas import (
    ChangeOrderCreate,
    ChangeOrderDelete,
    ChangeOrderRespond,
    ChangeOrderSend,
    ChangeOrderStatusUpdate,
    RecipientRespond,
    parse_payload,
)
from ..storage import ObjectStore
from ..utils import as_utc, decode_signature_image, new_link_token, utcnow
from .permissions import get_project, require_editor, require_member

logger = logging.getLogger(__name__)

RESPONSE_ROUTE = "change-order/respond"
CLIENT_RESPONSE_PAGE = "change-order-response.html"


@dataclass
class CreateResult:
    change_order: ChangeOrder
    recipients: List[ChangeOrderRecipient]
    email_warnings: List[str] = field(default_factory=list)


@dataclass
class SendResult:
    change_order: ChangeOrder
    respond_url: str
    client_email: str


@dataclass
class LinkBundle:
    link: ChangeOrderLink
    change_order: ChangeOrder
    project: Project
    client_profile: Optional[ClientProfile]


@dataclass
class RespondResult:
    change_order: ChangeOrder
    email_warning: Optional[str] = None


def build_client_url(token: str, request_base_url: str, client_url_base: Optional[str] = CHANGE_ORDER_CLIENT_URL_BASE) -> str:
    base = (client_url_base or "").strip().rstrip("/")
    query = urlencode({"token": token})
    if base:
        return f"{base}?{query}"
    return f"{request_base_url.rstrip('/')}/{CLIENT_RESPONSE_PAGE}?{query}"


def build_action_url(token: str, action: str, respond_base_url: Optional[str] = None) -> str:
    base = (respond_base_url or CHANGE_ORDER_RESPOND_BASE_URL or APP_URL or "").strip().rstrip("/")
    if base and "://" not in base:
        base = f"https://{base}"
    if not base.endswith(f"/{RESPONSE_ROUTE}"):
        base = f"{base}/{RESPONSE_ROUTE}"
    return f"{base}?{urlencode({'token': token, 'action': action})}"


class ChangeOrderService:
    def __init__(
        self,
        session: Session,
        mailer: Mailer,
        store: Optional[ObjectStore] = None,
        link_ttl: timedelta = timedelta(days=CHANGE_ORDER_LINK_TTL_DAYS),
        app_url: str = APP_URL,
    ):
        self.session = session
        self.mailer = mailer
        self.store = store
        self.link_ttl = link_ttl
        self.app_url = app_url

    # ---------- loading ----------

    def _get_change_order(self, change_order_id: str) -> ChangeOrder:
        change_order = self.session.get(ChangeOrder, change_order_id) if change_order_id else None
        if not change_order:
            raise NotFound("Change order not found.")
        return change_order

    def _client_profile(self, project_id: str) -> Optional[ClientProfile]:
        return self.session.exec(
            select(ClientProfile).where(ClientProfile.project_id == project_id)
        ).first()

    def _load_live_link(self, token) -> ChangeOrderLink:
        if not isinstance(token, str) or not token.strip():
            raise ValidationError("Missing token.")
        link = self.session.exec(
            select(ChangeOrderLink).where(ChangeOrderLink.token == token.strip())
        ).first()
        if not link:
            raise NotFound("This link is invalid or has expired.")
        if link.status != LinkStatus.pending:
            raise Gone("This link has already been used.")
        if link.expires_at and as_utc(link.expires_at) < utcnow():
            raise Gone("This link has expired.")
        return link

    def _bundle(self, link: ChangeOrderLink) -> LinkBundle:
        change_order = self._get_change_order(link.change_order_id)
        project = self.session.get(Project, change_order.project_id)
        if not project:
            raise NotFound("Project not found.")
        return LinkBundle(link, change_order, project, self._client_profile(project.id))

    def list_for_project(self, project_id: str, actor: User) -> List[ChangeOrder]:
        require_member(self.session, project_id, actor.id)
        return list(self.session.exec(
            select(ChangeOrder)
            .where(ChangeOrder.project_id == project_id)
            .order_by(ChangeOrder.requested_at.desc())
        ).all())

    # ---------- internal operations ----------

    def create(self, actor: User, body) -> CreateResult:
        payload = parse_payload(ChangeOrderCreate, body)
        project = get_project(self.session, payload.project_id)
        require_editor(self.session, project.id, actor.id, "create change orders for this project")

        line_items = [item.model_dump(by_alias=True) for item in payload.line_items]
        amount = sum(item.cost for item in payload.line_items) if line_items else payload.amount

        now = utcnow()
        change_order = ChangeOrder(
            project_id=project.id,
            title=payload.subject,
            description=payload.description.strip(),
            amount=amount,
            line_items=line_items,
            due_date=payload.due_date,
            status=ChangeOrderStatus.pending,
            requested_by=actor.id,
            requested_at=now,
            updated_at=now,
        )
        self.session.add(change_order)
        self.session.flush()

        profile = self._client_profile(project.id)
        primary_email = payload.recipient_email or (profile.contact_email if profile else None)
        primary_name = payload.recipient_name or (profile.contact_name if profile else None)
        recipients: List[ChangeOrderRecipient] = []
        seen = set()
        candidates = [(primary_email, primary_name)] + [(r.email, r.name) for r in payload.recipients]
        for email, name in candidates:
            cleaned = (email or "").strip().lower()
            if not cleaned or cleaned in seen:
                continue
            seen.add(cleaned)
            recipient = ChangeOrderRecipient(
                change_order_id=change_order.id,
                email=cleaned,
                name=(name or "").strip() or None,
                response_token=new_link_token(),
            )
            self.session.add(recipient)
            recipients.append(recipient)
        self.session.commit()
        self.session.refresh(change_order)
        for recipient in recipients:
            self.session.refresh(recipient)
        logger.info("Created change order %s on project %s with %d recipient(s)", change_order.id, project.id, len(recipients))

        warnings = []
        for recipient in recipients:
            action_urls = {
                action.value: build_action_url(recipient.response_token, action.value)
                for action in ACTION_STATUS
            }
            subject, html, text = change_order_recipient_email(change_order, project, action_urls)
            try:
                self.mailer.send(recipient.email, subject, html, text)
            except EmailDeliveryError as exc:
                logger.warning("Change order email to %s failed: %s", recipient.email, exc.message)
                warnings.append(f"{recipient.email}: {exc.message}")
        return CreateResult(change_order, recipients, warnings)

    def send(self, actor: User, body, request_base_url: str) -> SendResult:
        payload = parse_payload(ChangeOrderSend, body, "A valid changeOrderId is required.")
        change_order = self._get_change_order(payload.change_order_id)
        project = get_project(self.session, change_order.project_id)
        require_editor(self.session, project.id, actor.id, "send change orders for this project")
        profile = self._client_profile(project.id)

        client_email = ((payload.email or "").strip() or ((profile.contact_email or "").strip() if profile else "")).lower()
        if not client_email:
            raise ValidationError(
                "Client email required. Update the client profile before sending a change order."
            )

        now = utcnow()
        link = self.session.exec(
            select(ChangeOrderLink).where(
                ChangeOrderLink.change_order_id == change_order.id,
                ChangeOrderLink.client_email == client_email,
                ChangeOrderLink.status == LinkStatus.pending,
                ChangeOrderLink.expires_at > now,
            )
        ).first()
        if link is None:
            link = ChangeOrderLink(
                change_order_id=change_order.id,
                client_email=client_email,
                token=new_link_token(),
                expires_at=now + self.link_ttl,
            )
            self.session.add(link)
            self.session.commit()
            self.session.refresh(link)

        respond_url = build_client_url(link.token, request_base_url)
        subject, html, text = change_order_client_email(change_order, project, profile, respond_url)
        self.mailer.send(client_email, subject, html, text)

        change_order.client_last_sent_at = utcnow()
        change_order.client_view_token_expires_at = link.expires_at
        change_order.updated_at = change_order.client_last_sent_at
        self.session.add(change_order)
        self.session.commit()
        self.session.refresh(change_order)
        logger.info("Sent change order %s to %s", change_order.id, client_email)
        return SendResult(change_order, respond_url, client_email)

    def update_status(self, change_order_id: str, actor: User, body) -> ChangeOrder:
        payload = parse_payload(ChangeOrderStatusUpdate, body)
        change_order = self._get_change_order(change_order_id)
        require_editor(self.session, change_order.project_id, actor.id, "update change orders for this project")
        current = ChangeOrderStatus(change_order.status)
        if not can_transition(current, payload.status, override=payload.override):
            raise Conflict(f"Cannot move a change order from {current.value} to {payload.status.value}.")

        now = utcnow()
        change_order.status = payload.status
        if payload.status == ChangeOrderStatus.pending:
            change_order.decision_notes = None
            change_order.decision_at = None
            change_order.decision_by = None
        elif self._record_decision(change_order, payload.status, (payload.notes or "").strip() or None, now):
            change_order.decision_by = actor.id
        change_order.updated_at = now
        self.session.add(change_order)
        self.session.commit()
        self.session.refresh(change_order)
        return change_order

    def delete(self, actor: User, body) -> None:
        payload = parse_payload(ChangeOrderDelete, body, "A changeOrderId is required.")
        change_order = self._get_change_order(payload.change_order_id)
        require_editor(self.session, change_order.project_id, actor.id, "manage change orders for this project")
        self.session.exec(delete(ChangeOrderLink).where(ChangeOrderLink.change_order_id == change_order.id))
        self.session.exec(delete(ChangeOrderRecipient).where(ChangeOrderRecipient.change_order_id == change_order.id))
        self.session.delete(change_order)
        self.session.commit()
        logger.info("Deleted change order %s", payload.change_order_id)

    # ---------- client operations (token authenticated) ----------

    def verify(self, token) -> LinkBundle:
        link = self._load_live_link(token)
        bundle = self._bundle(link)
        link.last_viewed_at = utcnow()
        self.session.add(link)
        self.session.commit()
        self.session.refresh(link)
        return bundle

    def respond(self, body, client_ip: Optional[str]) -> RespondResult:
        body = body if isinstance(body, dict) else {}
        link = self._load_live_link(body.get("token"))
        payload = parse_payload(ChangeOrderRespond, body)
        notes = (payload.notes or "").strip() or None
        if payload.decision == ClientDecision.needs_info and not notes:
            raise ValidationError("Please include details when requesting more information.")

        bundle = self._bundle(link)
        change_order = bundle.change_order
        target = DECISION_STATUS[payload.decision]
        if not can_transition(ChangeOrderStatus(change_order.status), target):
            raise Conflict("This change order is no longer awaiting a decision.")

        now = utcnow()
        claimed = self.session.exec(
            update(ChangeOrderLink)
            .where(ChangeOrderLink.id == link.id, ChangeOrderLink.status == LinkStatus.pending)
            .values(
                status=LinkStatus.completed,
                decision=payload.decision.value,
                decision_notes=notes,
                decision_at=now,
            )
        )
        if claimed.rowcount != 1:
            self.session.rollback()
            raise Gone("This link has already been used.")

        signature_url = self._upload_signature(payload.signature_image, change_order.id, link.id)
        change_order.status = target
        self._record_decision(change_order, target, notes if notes is not None else change_order.decision_notes, now)
        change_order.client_signed_name = payload.signed_name.strip()
        change_order.client_signed_email = payload.signed_email.strip().lower()
        change_order.client_signed_at = now
        change_order.client_signed_ip = client_ip
        change_order.client_decision_notes = notes
        change_order.client_decision_source = "magic_link"
        change_order.client_signature_url = signature_url or change_order.client_signature_url
        change_order.last_notification_at = now
        change_order.updated_at = now
        self.session.add(change_order)
        self.session.commit()
        self.session.refresh(change_order)
        logger.info("Client %s change order %s via link %s", payload.decision.value, change_order.id, link.id)

        warning = self._notify_team(bundle, payload.decision, notes)
        return RespondResult(change_order, warning)

    def respond_as_recipient(self, body) -> ChangeOrderRecipient:
        body = body if isinstance(body, dict) else {}
        token = body.get("token")
        if not isinstance(token, str) or not token.strip():
            raise ValidationError("Invalid token.")
        recipient = self.session.exec(
            select(ChangeOrderRecipient).where(ChangeOrderRecipient.response_token == token.strip())
        ).first()
        if not recipient:
            raise NotFound("Recipient not found for token.")
        if recipient.status != ChangeOrderStatus.pending:
            raise Gone("This change order has already been responded to.")
        payload = parse_payload(RecipientRespond, body, "Invalid action.")

        change_order = self._get_change_order(recipient.change_order_id)
        status = ACTION_STATUS[payload.action]

        now = utcnow()
        claimed = self.session.exec(
            update(ChangeOrderRecipient)
            .where(
                ChangeOrderRecipient.id == recipient.id,
                ChangeOrderRecipient.status == ChangeOrderStatus.pending,
            )
            .values(status=status, responded_at=now)
        )
        if claimed.rowcount != 1:
            self.session.rollback()
            raise Gone("This change order has already been responded to.")

        note_parts = [(payload.note or "").strip() or None]
        signature_url = self._upload_signature(payload.signature, change_order.id, recipient.id)
        if signature_url:
            note_parts.append(f"Signature: {signature_url}")
        combined_note = "\n\n".join(part for part in note_parts if part) or None
        recipient.condition_note = combined_note
        self.session.add(recipient)

        statuses = self.session.exec(
            select(ChangeOrderRecipient.status).where(ChangeOrderRecipient.change_order_id == change_order.id)
        ).all()
        overall = aggregate_recipient_status(statuses)
        current = ChangeOrderStatus(change_order.status)
        if overall != ChangeOrderStatus.pending and overall != current:
            if not can_transition(current, overall):
                self.session.rollback()
                raise Conflict("This change order is no longer awaiting a decision.")
            change_order.status = overall
            self._record_decision(change_order, overall, combined_note, now)
        change_order.updated_at = now
        self.session.add(change_order)
        self.session.commit()
        self.session.refresh(recipient)
        return recipient

    @staticmethod
    def _record_decision(change_order: ChangeOrder, status: ChangeOrderStatus, notes: Optional[str], now) -> bool:
        """Stamp decision notes and time; needs_info is not a decision and keeps the previous ones."""
        if status == ChangeOrderStatus.needs_info:
            return False
        change_order.decision_notes = notes
        change_order.decision_at = now
        return True

    # ---------- side effects ----------

    def _upload_signature(self, data_url, change_order_id: str, suffix: str) -> Optional[str]:
        decoded = decode_signature_image(data_url)
        if not decoded or self.store is None:
            return None
        data, extension = decoded
        content_type = "image/jpeg" if extension == "jpg" else "image/png"
        return self.store.upload_public(f"{change_order_id}/{suffix}.{extension}", data, content_type)

    def _team_emails(self, project: Project) -> List[str]:
        emails = set()
        owners = self.session.exec(
            select(ProjectMember.email).where(
                ProjectMember.project_id == project.id,
                ProjectMember.role == MemberRole.owner,
                ProjectMember.status == MemberStatus.accepted,
            )
        ).all()
        emails.update(email.lower() for email in owners if email)
        owner = self.session.get(User, project.user_id)
        if owner and owner.email:
            emails.add(owner.email.lower())
        return sorted(emails)

    def _notify_team(self, bundle: LinkBundle, decision: ClientDecision, notes: Optional[str]) -> Optional[str]:
        recipients = self._team_emails(bundle.project)
        if not recipients:
            return None
        workspace_url = f"{self.app_url.rstrip('/')}/projects/{bundle.project.id}"
        subject, html, text = client_decision_summary(
            bundle.change_order, bundle.client_profile, decision, notes, workspace_url
        )
        try:
            self.mailer.send(recipients, subject, html, text)
        except EmailDeliveryError as exc:
            logger.warning("Team notification for change order %s failed: %s", bundle.change_order.id, exc.message)
            return exc.message
        return None
