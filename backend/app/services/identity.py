"""Identity lookups used by the messaging core."""

from __future__ import annotations

from sqlalchemy.orm import Session

from app.core.exceptions import AuthenticationError
from app.core.security import decode_access_token
from app.models import User


def find_user_by_id(user_id: int, db: Session) -> User | None:
    return db.get(User, user_id)


def verify_bearer_token(token: str | None, db: Session) -> User:
    """Resolve a user from a JWT access token or raise ``AuthenticationError``."""

    if not token:
        raise AuthenticationError("Missing token")

    payload = decode_access_token(token)
    sub = payload.get("sub")
    if sub is None:
        raise AuthenticationError("Could not validate credentials")

    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise AuthenticationError("Could not validate credentials") from None

    user = find_user_by_id(user_id, db)
    if user is None:
        raise AuthenticationError("Could not validate credentials")
    return user


def extract_bearer_token(authorization: str | None) -> str | None:
    if authorization and authorization.startswith("Bearer "):
        token = authorization.removeprefix("Bearer ").strip()
        return token or None
    return None
