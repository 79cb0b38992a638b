from typing import List, Optional
from datetime import date, datetime
from uuid import uuid4
from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import SQLModel, Field as ORMField

from .enums import ChangeOrderStatus, LinkStatus, MemberRole, MemberStatus
from .utils import utcnow


def new_id() -> str:
    return str(uuid4())


class User(SQLModel, table=True):
    id: str = ORMField(default_factory=new_id, primary_key=True)
    email: str = ORMField(index=True, unique=True)
    full_name: Optional[str] = None
    created_at: datetime = ORMField(default_factory=utcnow)

class Project(SQLModel, table=True):
    id: str = ORMField(default_factory=new_id, primary_key=True)
    user_id: str = ORMField(index=True)
    name: str
    reference_id: Optional[str] = None
    color: Optional[str] = None
    address: Optional[str] = None
    manager: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    cost: Optional[float] = None
    created_at: datetime = ORMField(default_factory=utcnow)

class ProjectMember(SQLModel, table=True):
    __tablename__ = "project_members"
    __table_args__ = (UniqueConstraint("project_id", "email", name="uq_project_member_email"),)

    id: str = ORMField(default_factory=new_id, primary_key=True)
    project_id: str = ORMField(index=True)
    user_id: Optional[str] = ORMField(default=None, index=True)
    email: str
    role: MemberRole = MemberRole.viewer
    status: MemberStatus = MemberStatus.pending
    invited_by: Optional[str] = None
    invited_at: datetime = ORMField(default_factory=utcnow)
    accepted_at: Optional[datetime] = None
    full_name: Optional[str] = None

class ClientProfile(SQLModel, table=True):
    __tablename__ = "client_profiles"

    id: str = ORMField(default_factory=new_id, primary_key=True)
    project_id: str = ORMField(index=True, unique=True)
    company_name: str = ""
    contact_name: str = ""
    contact_email: str = ""
    contact_phone: str = ""
    address: str = ""
    updated_at: datetime = ORMField(default_factory=utcnow)

class ChangeOrder(SQLModel, table=True):
    __tablename__ = "change_orders"

    id: str = ORMField(default_factory=new_id, primary_key=True)
    project_id: str = ORMField(index=True)
    title: str
    description: str = ""
    amount: Optional[float] = None
    line_items: List[dict] = ORMField(default_factory=list, sa_column=Column(JSON, nullable=False))
    due_date: Optional[date] = None
    status: ChangeOrderStatus = ChangeOrderStatus.pending
    requested_by: Optional[str] = None
    requested_at: datetime = ORMField(default_factory=utcnow)
    decision_by: Optional[str] = None
    decision_at: Optional[datetime] = None
    decision_notes: Optional[str] = None
    client_signed_name: Optional[str] = None
    client_signed_email: Optional[str] = None
    client_signed_at: Optional[datetime] = None
    client_signed_ip: Optional[str] = None
    client_decision_notes: Optional[str] = None
    client_decision_source: Optional[str] = None
    client_signature_url: Optional[str] = None
    client_last_sent_at: Optional[datetime] = None
    client_view_token_expires_at: Optional[datetime] = None
    last_notification_at: Optional[datetime] = None
    updated_at: datetime = ORMField(default_factory=utcnow)

class ChangeOrderLink(SQLModel, table=True):
    __tablename__ = "change_order_links"

    id: str = ORMField(default_factory=new_id, primary_key=True)
    change_order_id: str = ORMField(index=True)
    client_email: str
    token: str = ORMField(index=True, unique=True)
    status: LinkStatus = LinkStatus.pending
    expires_at: datetime
    decision: Optional[str] = None
    decision_notes: Optional[str] = None
    decision_at: Optional[datetime] = None
    last_viewed_at: Optional[datetime] = None
    created_at: datetime = ORMField(default_factory=utcnow)

class ChangeOrderRecipient(SQLModel, table=True):
    __tablename__ = "change_order_recipients"

    id: str = ORMField(default_factory=new_id, primary_key=True)
    change_order_id: str = ORMField(index=True)
    email: str
    name: Optional[str] = None
    status: ChangeOrderStatus = ChangeOrderStatus.pending
    condition_note: Optional[str] = None
    response_token: str = ORMField(index=True, unique=True)
    responded_at: Optional[datetime] = None
    created_at: datetime = ORMField(default_factory=utcnow)
