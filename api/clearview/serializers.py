from datetime import datetime
from typing import Optional

from .models import ChangeOrder, ChangeOrderLink, ChangeOrderRecipient, ClientProfile, Project, ProjectMember, User
from .utils import as_utc


def _iso(value):
    if isinstance(value, datetime):
        value = as_utc(value)
    return value.isoformat() if value is not None else None

def _value(enum_or_str):
    return getattr(enum_or_str, "value", enum_or_str)

def serialize_user(user: User):
    return {"id": user.id, "email": user.email, "fullName": user.full_name}

def serialize_member(row: ProjectMember):
    return {
        "id": row.id,
        "projectId": row.project_id,
        "userId": row.user_id,
        "email": (row.email or "").lower(),
        "role": _value(row.role),
        "status": _value(row.status),
        "invitedBy": row.invited_by or "",
        "invitedAt": _iso(row.invited_at),
        "acceptedAt": _iso(row.accepted_at),
        "fullName": row.full_name,
    }

def serialize_project(row: Project):
    return {
        "id": row.id,
        "userId": row.user_id,
        "name": row.name,
        "referenceId": row.reference_id,
        "color": row.color,
        "address": row.address,
        "manager": row.manager,
        "startDate": _iso(row.start_date),
        "endDate": _iso(row.end_date),
        "cost": row.cost,
        "createdAt": _iso(row.created_at),
    }

def serialize_change_order(row: ChangeOrder):
    return {
        "id": row.id,
        "projectId": row.project_id,
        "title": row.title,
        "description": row.description,
        "amount": row.amount,
        "lineItems": row.line_items or [],
        "requestedBy": row.requested_by,
        "requestedAt": _iso(row.requested_at),
        "dueDate": _iso(row.due_date),
        "status": _value(row.status),
        "decisionBy": row.decision_by,
        "decisionAt": _iso(row.decision_at),
        "decisionNotes": row.decision_notes,
        "clientSignedName": row.client_signed_name,
        "clientSignedEmail": row.client_signed_email,
        "clientSignedAt": _iso(row.client_signed_at),
        "clientSignedIp": row.client_signed_ip,
        "clientDecisionNotes": row.client_decision_notes,
        "clientDecisionSource": row.client_decision_source,
        "clientViewTokenExpiresAt": _iso(row.client_view_token_expires_at),
        "clientLastSentAt": _iso(row.client_last_sent_at),
        "clientSignatureUrl": row.client_signature_url,
        "lastNotificationAt": _iso(row.last_notification_at),
    }

# what an unauthenticated client holding a link may see

def sanitize_change_order(row: ChangeOrder):
    return {
        "id": row.id,
        "projectId": row.project_id,
        "title": row.title,
        "description": row.description,
        "amount": row.amount,
        "requestedAt": _iso(row.requested_at),
        "dueDate": _iso(row.due_date),
        "status": _value(row.status),
    }

def sanitize_project(row: Project):
    return {"id": row.id, "name": row.name, "referenceId": row.reference_id, "color": row.color}

def sanitize_client_profile(row: Optional[ClientProfile]):
    return {
        "companyName": row.company_name if row else "",
        "contactName": row.contact_name if row else "",
        "contactEmail": row.contact_email if row else "",
        "contactPhone": row.contact_phone if row else "",
        "address": row.address if row else "",
    }

def sanitize_link(row: ChangeOrderLink):
    return {"id": row.id, "expiresAt": _iso(row.expires_at), "token": row.token}

def serialize_recipient(row: ChangeOrderRecipient):
    return {
        "id": row.id,
        "changeOrderId": row.change_order_id,
        "email": row.email,
        "name": row.name,
        "status": _value(row.status),
        "conditionNote": row.condition_note,
        "respondedAt": _iso(row.responded_at),
    }

def serialize_client_profile(row: ClientProfile):
    return {"id": row.id, "projectId": row.project_id, **sanitize_client_profile(row), "updatedAt": _iso(row.updated_at)}
