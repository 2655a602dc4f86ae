"""ORM model for application users (auth and RBAC)."""

from enum import Enum

from sqlalchemy import Column, DateTime, Integer, String, func

from userhub.models.base import Base


class UserRole(str, Enum):
    """Roles recognised by the ability engine; exactly one per user."""

    ADMIN = "admin"
    MANAGER = "manager"
    USER = "user"


class User(Base):
    """
    User account for JWT authentication and role-based access control.

    role: 'admin', 'manager' or 'user'. The password is only ever stored as a
    bcrypt hash and is never serialized into responses.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, default=UserRole.USER.value)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"
