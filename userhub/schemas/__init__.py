"""Pydantic request/response schemas."""

from userhub.schemas.auth import LoginRequest, TokenResponse
from userhub.schemas.health import HealthResponse
from userhub.schemas.users import (
    DeleteResponse,
    ErrorResponse,
    UserCreate,
    UserCreatedResponse,
    UserRead,
    UserSummary,
    UserUpdate,
)

__all__ = [
    "DeleteResponse",
    "ErrorResponse",
    "HealthResponse",
    "LoginRequest",
    "TokenResponse",
    "UserCreate",
    "UserCreatedResponse",
    "UserRead",
    "UserSummary",
    "UserUpdate",
]
