"""Request/response schemas for auth endpoints."""

from pydantic import BaseModel, Field

from userhub.schemas.users import UserSummary


class LoginRequest(BaseModel):
    """Credentials for login."""

    email: str = Field(..., min_length=3, max_length=255, description="Login email")
    password: str = Field(..., min_length=1, max_length=128, description="Password")


class TokenResponse(BaseModel):
    """JWT access token returned after successful login, plus the user it identifies."""

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    user: UserSummary
