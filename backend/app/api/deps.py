"""FastAPI dependencies for the API layer."""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.exceptions import AuthenticationError
from app.database import get_db
from app.models import User
from app.services.identity import verify_bearer_token
from parley.realtime import gateway as realtime_gateway

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Retrieve the current user from the JWT bearer token."""

    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Not authenticated")
    return verify_bearer_token(credentials.credentials, db)


def get_gateway():
    return realtime_gateway.get_chat_gateway()
