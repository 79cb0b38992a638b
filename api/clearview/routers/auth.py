from typing import Any
from fastapi import APIRouter, Body, Depends
from sqlmodel import Session, select

from ..auth import get_current_user, require_admin_access
from ..db import get_session
from ..models import User
from ..schemas import SessionCreate, parse_payload
from ..serializers import serialize_user
from ..utils import make_session_token

router = APIRouter()

@router.post("/sessions")
def create_session(
    body: Any = Body(default=None),
    session: Session = Depends(get_session),
    ctx=Depends(require_admin_access),
):
    payload = parse_payload(SessionCreate, body, "A valid email is required.")
    email = payload.email.lower()
    user = session.exec(select(User).where(User.email == email)).first()
    if not user:
        user = User(email=email, full_name=(payload.full_name or "").strip() or None)
        session.add(user)
        session.commit()
        session.refresh(user)
    elif payload.full_name and payload.full_name.strip() != user.full_name:
        user.full_name = payload.full_name.strip()
        session.add(user)
        session.commit()
        session.refresh(user)
    return {"token": make_session_token(user.id), "user": serialize_user(user)}

@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return {"user": serialize_user(user)}
