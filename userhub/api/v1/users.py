"""Users resource: registration plus ability-gated read, update and delete."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from userhub.api.v1.abilities import Requirement, check_abilities, ensure_can
from userhub.api.v1.auth import get_current_user
from userhub.core.ability import Action, RuleSet
from userhub.core.config import Settings, get_settings
from userhub.core.database import get_db
from userhub.models.user import User
from userhub.schemas.users import (
    DeleteResponse,
    ErrorResponse,
    UserCreate,
    UserCreatedResponse,
    UserRead,
    UserUpdate,
)
from userhub.services import users as user_store

router = APIRouter()

can_list_users = check_abilities(Requirement(Action.READ, User, unconditional=True))
can_read_user = check_abilities(Requirement(Action.READ, User))
can_update_user = check_abilities(Requirement(Action.UPDATE, User))
can_delete_user = check_abilities(Requirement(Action.DELETE, User))


def _load(db: Session, user_id: int) -> User:
    try:
        return user_store.find_one(db, user_id)
    except user_store.UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=UserCreatedResponse,
    responses={status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse}},
)
def create_user(
    body: UserCreate,
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> UserCreatedResponse | JSONResponse:
    """
    Register a user. The role is taken as sent (default 'user'); the very
    first account is reported as the admin bootstrap but is not elevated.
    """
    is_first = user_store.count(db) == 0
    try:
        user = user_store.create(db, body.model_dump(), settings)
    except user_store.UserValidationError as e:
        error = ErrorResponse(message=str(e), errors=[str(e)])
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error.model_dump())
    message = "Admin user created successfully" if is_first else "User created successfully"
    return UserCreatedResponse(message=message, data=UserRead.model_validate(user))


@router.get("", response_model=list[UserRead])
def list_users(
    ability: Annotated[RuleSet, Depends(can_list_users)],
    db: Annotated[Session, Depends(get_db)],
) -> list[User]:
    """List the users the caller's abilities allow them to see."""
    return user_store.find_all(db, ability)


@router.get("/me", response_model=UserRead)
def read_me(current_user: Annotated[User, Depends(get_current_user)]) -> User:
    """Return the authenticated user's own record."""
    return current_user


@router.get("/{user_id}", response_model=UserRead)
def read_user(
    user_id: int,
    ability: Annotated[RuleSet, Depends(can_read_user)],
    db: Annotated[Session, Depends(get_db)],
) -> User:
    user = _load(db, user_id)
    ensure_can(ability, Action.READ, user)
    return user


@router.patch("/{user_id}", response_model=UserRead)
def update_user(
    user_id: int,
    body: UserUpdate,
    ability: Annotated[RuleSet, Depends(can_update_user)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> User:
    """
    Update the fields sent in the body. The caller must be allowed to update
    this record and each field in the patch (e.g. only admins may change role).
    """
    patch = body.model_dump(exclude_unset=True, exclude_none=True)
    user = _load(db, user_id)
    ensure_can(ability, Action.UPDATE, user)
    for field in patch:
        ensure_can(ability, Action.UPDATE, user, field)
    try:
        return user_store.update(db, user_id, patch, settings)
    except user_store.DuplicateEmailError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.delete("/{user_id}", response_model=DeleteResponse)
def delete_user(
    user_id: int,
    ability: Annotated[RuleSet, Depends(can_delete_user)],
    db: Annotated[Session, Depends(get_db)],
) -> DeleteResponse:
    user = _load(db, user_id)
    ensure_can(ability, Action.DELETE, user)
    user_store.remove(db, user_id)
    return DeleteResponse(message=f"User {user_id} removed")
