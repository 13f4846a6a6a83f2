"""User account model."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, String
from sqlmodel import Field, SQLModel

from usersvc.models.base import TimestampMixin, generate_nanoid


class AuthProvider(str, Enum):
    """How the account was created."""

    PASSWORD = "password"
    GOOGLE = "google"
    APPLE = "apple"
    PHONE = "phone"


class UserStatus(str, Enum):
    """Account status. Only active accounts may log in."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING = "pending"


class User(TimestampMixin, SQLModel, table=True):
    """User account model.

    Any of username, email and phone may be absent, but each is unique when
    present. Phone numbers are stored in canonical ``+251XXXXXXXXX`` form.
    """

    __tablename__ = "users"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    username: str | None = Field(default=None, unique=True, index=True, max_length=50)
    email: str | None = Field(default=None, unique=True, index=True, max_length=255)
    phone: str | None = Field(default=None, unique=True, index=True, max_length=20)
    password_hash: str | None = Field(default=None, max_length=255)
    auth_provider: str = Field(
        default=AuthProvider.PASSWORD.value,
        sa_column=Column(String(20), nullable=False, default=AuthProvider.PASSWORD.value),
    )
    is_verified: bool = Field(default=False)
    status: str = Field(
        default=UserStatus.ACTIVE.value,
        sa_column=Column(String(20), nullable=False, default=UserStatus.ACTIVE.value),
    )
    last_login: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value
