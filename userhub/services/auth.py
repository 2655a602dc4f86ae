"""Login: credential verification and access-token issuance."""

import logging

from sqlalchemy.orm import Session

from userhub.core.config import Settings
from userhub.core.security import create_access_token, verify_password
from userhub.models.user import User
from userhub.schemas.auth import TokenResponse
from userhub.schemas.users import UserSummary
from userhub.services import users as user_store

logger = logging.getLogger(__name__)


class InvalidCredentialsError(Exception):
    """Unknown email or wrong password (deliberately indistinguishable)."""

    def __init__(self) -> None:
        super().__init__("Invalid email or password.")


def authenticate(db: Session, email: str, password: str) -> User:
    """Return the user whose email and password match, else raise InvalidCredentialsError."""
    user = user_store.find_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        logger.warning("Failed login attempt for email=%s", email)
        raise InvalidCredentialsError()
    return user


def issue_login(user: User, settings: Settings | None = None) -> TokenResponse:
    """Mint a bearer token for user; claims are sub (id), email and role."""
    token = create_access_token(sub=user.id, email=user.email, role=user.role, settings=settings)
    logger.info("Issued access token: user_id=%s", user.id)
    return TokenResponse(
        access_token=token,
        token_type="bearer",
        user=UserSummary.model_validate(user),
    )
