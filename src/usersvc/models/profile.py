"""User profile model."""

from enum import Enum
from typing import Any

from sqlalchemy import JSON, Column, String
from sqlmodel import Field, SQLModel

from usersvc.models.base import TimestampMixin, generate_nanoid


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class VerificationLevel(str, Enum):
    """Verification level derived from approved verification requests."""

    NONE = "none"
    KYC = "kyc"
    PROFESSIONAL = "professional"
    FULL = "full"


class Profile(TimestampMixin, SQLModel, table=True):
    """Public profile attached one-to-one to a user."""

    __tablename__ = "profiles"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    user_id: str = Field(
        foreign_key="users.id", unique=True, index=True, max_length=21, ondelete="CASCADE"
    )
    full_name: str | None = Field(default=None, max_length=160)
    bio: str | None = Field(default=None)
    profession: str | None = Field(default=None, max_length=120)
    languages: list[str] | None = Field(default=None, sa_column=Column(JSON))
    photo_url: str | None = Field(default=None, max_length=500)
    gender: str | None = Field(default=None, max_length=10)
    age: int | None = Field(default=None)
    religion: str | None = Field(default=None, max_length=100)
    ethnicity: str | None = Field(default=None, max_length=100)
    education: str | None = Field(default=None, max_length=120)
    interests: list[str] | None = Field(default=None, sa_column=Column(JSON))
    rating_avg: float = Field(default=0.0)
    rating_count: int = Field(default=0)
    verification_status: str = Field(
        default=VerificationLevel.NONE.value,
        sa_column=Column(String(20), nullable=False, default=VerificationLevel.NONE.value),
    )

    def snapshot(self) -> dict[str, Any]:
        """Profile fields embedded in access-token claims."""
        return {
            "fullName": self.full_name,
            "profession": self.profession,
            "photoUrl": self.photo_url,
            "verificationStatus": self.verification_status,
        }
