"""Pydantic schemas for the users resource. No schema ever carries the password hash."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from userhub.models.user import UserRole


class UserSummary(BaseModel):
    """Public user fields (login response, token claims)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: UserRole


class UserRead(UserSummary):
    """User as returned by the users endpoints."""

    created_at: datetime | None = Field(default=None, serialization_alias="createdAt")
    updated_at: datetime | None = Field(default=None, serialization_alias="updatedAt")


class UserCreate(BaseModel):
    """Body for POST /users. password is validated by the service so the error is reported uniformly."""

    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    password: str | None = Field(default=None, max_length=128)
    role: UserRole = UserRole.USER


class UserUpdate(BaseModel):
    """Body for PATCH /users/{id}; only the fields sent are applied."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: str | None = Field(default=None, min_length=3, max_length=255)
    password: str | None = Field(default=None, min_length=6, max_length=128)
    role: UserRole | None = None


class UserCreatedResponse(BaseModel):
    """Envelope for a successful POST /users."""

    success: bool = True
    message: str
    data: UserRead


class ErrorResponse(BaseModel):
    """Envelope for a rejected POST /users."""

    success: bool = False
    message: str
    errors: list[str] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    """Body for DELETE /users/{id}."""

    success: bool = True
    message: str
