"""JWT login and authentication dependencies (get_optional_user, get_current_user)."""

from typing import Annotated

import jwt
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from userhub.core.config import Settings, get_settings
from userhub.core.database import get_db
from userhub.core.security import decode_access_token
from userhub.models.user import User
from userhub.schemas.auth import LoginRequest, TokenResponse
from userhub.services.auth import InvalidCredentialsError, authenticate, issue_login

router = APIRouter()
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


@router.post("/login", response_model=TokenResponse)
def login(
    body: LoginRequest,
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> TokenResponse:
    """
    Authenticate with email and password; returns a JWT access token and the user.
    Include the token in the Authorization header as: Bearer <access_token>
    """
    try:
        user = authenticate(db, body.email, body.password)
    except InvalidCredentialsError as e:
        raise _unauthorized(str(e))
    return issue_login(user, settings)


def get_optional_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> User | None:
    """
    Dependency: resolve the Bearer JWT to a user. Returns None when no token
    is sent; raises 401 when a token is sent but is invalid, expired, or
    names a user that no longer exists.
    """
    if credentials is None:
        return None
    try:
        payload = decode_access_token(credentials.credentials, settings)
    except jwt.PyJWTError:
        raise _unauthorized("Invalid or expired token")
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise _unauthorized("Invalid token payload")
    user = db.get(User, user_id)
    if user is None:
        raise _unauthorized("User not found")
    return user


def get_current_user(
    user: Annotated[User | None, Depends(get_optional_user)],
) -> User:
    """Dependency: require valid Bearer JWT and return the current user. Raises 401 if missing."""
    if user is None:
        raise _unauthorized("Not authenticated")
    return user
