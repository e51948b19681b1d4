"""Bearer tokens: owner access tokens and OTP share sessions (HS256 JWTs)."""

from datetime import datetime, timedelta

from jose import JWTError, jwt

from signatura.clock import utcnow
from signatura.config import settings

SHARE_SESSION_TYPE = "share_session"


def create_access_token(owner_id: str, expires_minutes: int | None = None) -> str:
    expire = utcnow() + timedelta(minutes=expires_minutes or settings.jwt_expire_minutes)
    return jwt.encode({"sub": owner_id, "exp": expire}, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str | None:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if payload.get("typ") == SHARE_SESSION_TYPE:
        return None
    return payload.get("sub")


def create_share_session(grant_id: str, email: str, not_after: datetime | None = None) -> tuple[str, datetime]:
    """Short-lived capability issued after OTP success, never outliving the grant."""
    expire = utcnow() + timedelta(minutes=settings.share_session_minutes)
    if not_after is not None and not_after < expire:
        expire = not_after
    token = jwt.encode(
        {"sub": email, "grant": grant_id, "typ": SHARE_SESSION_TYPE, "exp": expire},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    return token, expire


def decode_share_session(token: str | None) -> dict | None:
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if payload.get("typ") != SHARE_SESSION_TYPE:
        return None
    return payload
