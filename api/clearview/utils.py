import base64, binascii, re, secrets
from datetime import datetime, timezone
from typing import Optional, Tuple
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from .config import SECRET_KEY, SESSION_MAX_AGE

_DATA_URL = re.compile(r"^data:image/(png|jpeg);base64,(.+)$", re.DOTALL)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # some backends hand timestamps back without tzinfo; they are stored as UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)

def decode_signature_image(data_url) -> Optional[Tuple[bytes, str]]:
    """Return (bytes, extension) for a png/jpeg data URL, or None if it is not one."""
    if not isinstance(data_url, str):
        return None
    match = _DATA_URL.match(data_url.strip())
    if not match:
        return None
    extension = "jpg" if match.group(1) == "jpeg" else match.group(1)
    try:
        return base64.b64decode(match.group(2), validate=True), extension
    except (binascii.Error, ValueError):
        return None

def new_link_token() -> str:
    return secrets.token_urlsafe(32)

def _session_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(SECRET_KEY, salt="session")

def make_session_token(user_id: str) -> str:
    return _session_serializer().dumps({"user_id": user_id})

def read_session_token(token: str, max_age: int = SESSION_MAX_AGE) -> Optional[dict]:
    try:
        return _session_serializer().loads(token, max_age=max_age)
    except (SignatureExpired, BadSignature):
        return None

def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        return None
    return parts[1]
