"""Role and role-assignment models."""

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from usersvc.models.base import TimestampMixin, generate_nanoid

ADMIN_ROLE = "admin"

DEFAULT_ROLES = [
    "user",
    ADMIN_ROLE,
    "employer",
    "employee",
    "doctor",
    "teacher",
    "landlord",
    "tenant",
    "buyer",
    "seller",
    "service_provider",
]


class Role(TimestampMixin, SQLModel, table=True):
    """A named role that can be granted to users."""

    __tablename__ = "roles"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    name: str = Field(unique=True, index=True, max_length=50)


class UserRole(TimestampMixin, SQLModel, table=True):
    """Grant of a role to a user."""

    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),)

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    user_id: str = Field(foreign_key="users.id", index=True, max_length=21, ondelete="CASCADE")
    role_id: str = Field(foreign_key="roles.id", index=True, max_length=21, ondelete="CASCADE")
