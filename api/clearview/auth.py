from typing import Optional
from fastapi import Depends, Header
from sqlmodel import Session

from .config import ADMIN_ACCESS_TOKEN
from .db import get_session
from .errors import PermissionDenied, Unauthorized
from .models import User
from .utils import parse_bearer_token, read_session_token


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    session: Session = Depends(get_session),
) -> User:
    token = parse_bearer_token(authorization)
    if not token:
        raise Unauthorized("Missing or invalid authorization header.")
    data = read_session_token(token)
    user = session.get(User, data.get("user_id")) if data else None
    if not user:
        raise Unauthorized("The session token is invalid or expired.")
    return user


def require_admin_access(
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
) -> None:
    if not x_access_token:
        raise Unauthorized("Missing access token")
    if not ADMIN_ACCESS_TOKEN or x_access_token != ADMIN_ACCESS_TOKEN:
        raise PermissionDenied("Admin access required")
