"""Document verification request model."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, String
from sqlmodel import Field, SQLModel

from usersvc.models.base import TimestampMixin, generate_nanoid


class VerificationType(str, Enum):
    KYC = "kyc"
    DOCTOR_LICENSE = "doctor_license"
    TEACHER_CERT = "teacher_cert"
    BUSINESS_LICENSE = "business_license"
    EMPLOYER_CERT = "employer_cert"
    OTHER = "other"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Types that count toward the "professional" verification level
PROFESSIONAL_TYPES = frozenset(
    {
        VerificationType.DOCTOR_LICENSE.value,
        VerificationType.TEACHER_CERT.value,
        VerificationType.BUSINESS_LICENSE.value,
        VerificationType.EMPLOYER_CERT.value,
    }
)


class Verification(TimestampMixin, SQLModel, table=True):
    """A user's request to have a document reviewed by an admin."""

    __tablename__ = "verifications"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    user_id: str = Field(foreign_key="users.id", index=True, max_length=21, ondelete="CASCADE")
    type: str = Field(sa_column=Column(String(30), nullable=False))
    document_url: str | None = Field(default=None, max_length=500)
    status: str = Field(
        default=VerificationStatus.PENDING.value,
        sa_column=Column(
            String(20), nullable=False, index=True, default=VerificationStatus.PENDING.value
        ),
    )
    notes: str | None = Field(default=None)
    verified_by: str | None = Field(default=None, foreign_key="users.id", max_length=21)
    verified_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
