import logging
from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy import inspect
from .config import DATABASE_URL

logger = logging.getLogger(__name__)

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True, connect_args=_connect_args)

def init_db():
    from .models import User, Project, ProjectMember, ClientProfile, ChangeOrder, ChangeOrderLink, ChangeOrderRecipient  # noqa: F401
    SQLModel.metadata.create_all(engine)
    _warn_duplicate_member_emails()

def get_session():
    with Session(engine) as session:
        yield session

def _warn_duplicate_member_emails():
    indexes = inspect(engine).get_unique_constraints("project_members")
    if not any(idx.get("name") == "uq_project_member_email" for idx in indexes):
        logger.warning(
            "project_members has no (project_id, email) unique constraint; duplicate invites are only checked in code"
        )
