"""User store operations: create, list, fetch, update, delete and count users."""

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from userhub.core.ability import Action, RuleSet
from userhub.core.config import Settings
from userhub.core.security import hash_password
from userhub.models.user import User, UserRole

logger = logging.getLogger(__name__)

# Columns a create/update payload may set directly (password is hashed separately).
WRITABLE_FIELDS = ("name", "email", "role")


class UserServiceError(Exception):
    """Base error for user store operations; message is safe to show to clients."""


class UserValidationError(UserServiceError):
    """Input rejected before anything is written."""


class PasswordRequiredError(UserValidationError):
    """Raised when a user is created without a password."""

    def __init__(self) -> None:
        super().__init__("Password is required")


class DuplicateEmailError(UserValidationError):
    """Raised when the email is already registered."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__("Email already in use")


class UserNotFoundError(UserServiceError):
    """Raised when no user has the requested id."""

    def __init__(self, user_id: int) -> None:
        self.user_id = user_id
        super().__init__(f"User with id {user_id} not found")


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, UserRole) else value


def _commit_or_duplicate(db: Session, email: str | None) -> None:
    """Commit; a unique-index violation on email becomes DuplicateEmailError."""
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.info("Rejected write: email already registered (email=%s)", email)
        raise DuplicateEmailError(email or "") from e


def find_by_email(db: Session, email: str) -> User | None:
    return db.query(User).filter(User.email == email).first()


def count(db: Session) -> int:
    """Number of stored users; 0 means the next user is the first one."""
    return db.query(User).count()


def create(db: Session, data: Mapping[str, Any], settings: Settings | None = None) -> User:
    """
    Create a user from data (name, email, password, optional role).

    Raises PasswordRequiredError when password is missing and
    DuplicateEmailError when the email is taken. The existence check avoids
    a write in the common case; the unique index on users.email is what
    actually guarantees uniqueness under concurrent creates.
    """
    password = data.get("password")
    if not password:
        raise PasswordRequiredError()
    email = data.get("email")
    if email and find_by_email(db, email) is not None:
        raise DuplicateEmailError(email)

    values = {key: _plain(data[key]) for key in WRITABLE_FIELDS if data.get(key) is not None}
    user = User(**values, password_hash=hash_password(password, settings))
    db.add(user)
    _commit_or_duplicate(db, email)
    db.refresh(user)
    logger.info("User created: id=%s role=%s", user.id, user.role)
    return user


def find_all(db: Session, ability: RuleSet) -> list[User]:
    """Users the caller may see in listings, as decided by their rule set."""
    return (
        db.query(User)
        .filter(ability.query_filter(Action.LIST, User))
        .order_by(User.id)
        .all()
    )


def find_one(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    return user


def update(
    db: Session,
    user_id: int,
    patch: Mapping[str, Any],
    settings: Settings | None = None,
) -> User:
    """Apply patch to the user; a new password is re-hashed before storing."""
    user = find_one(db, user_id)
    if patch.get("password"):
        user.password_hash = hash_password(patch["password"], settings)
    for key in WRITABLE_FIELDS:
        if key in patch and patch[key] is not None:
            setattr(user, key, _plain(patch[key]))
    _commit_or_duplicate(db, patch.get("email"))
    db.refresh(user)
    logger.info("User updated: id=%s fields=%s", user.id, sorted(patch))
    return user


def remove(db: Session, user_id: int) -> None:
    user = find_one(db, user_id)
    db.delete(user)
    db.commit()
    logger.info("User deleted: id=%s", user_id)
