"""One-time password records."""

from enum import Enum

from sqlalchemy import BigInteger, Column, Index, String, text
from sqlmodel import Field, SQLModel

from usersvc.models.base import TimestampMixin, generate_nanoid


class OtpStatus(str, Enum):
    """Lifecycle of an OTP record.

    pending -> verified | expired | locked. A locked record is never reset;
    it is removed once its lockout window has passed.
    """

    PENDING = "pending"
    VERIFIED = "verified"
    EXPIRED = "expired"
    LOCKED = "locked"


OPEN_STATUSES = (OtpStatus.PENDING.value, OtpStatus.LOCKED.value)
CLOSED_STATUSES = (OtpStatus.VERIFIED.value, OtpStatus.EXPIRED.value)


class OtpRecord(TimestampMixin, SQLModel, table=True):
    """A hashed one-time code issued to a phone.

    ``scope`` is the phone plus optional reference fields collapsed into one
    string; the partial unique index keeps at most one pending record per
    scope. ``issued_at`` and ``expires_at`` are epoch milliseconds. For a
    locked record ``expires_at`` is the end of the lockout window.
    """

    __tablename__ = "otps"
    __table_args__ = (
        Index(
            "uq_otps_pending_scope",
            "scope",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    phone: str = Field(index=True, max_length=20)
    reference_type: str | None = Field(default=None, max_length=50)
    reference_id: str | None = Field(default=None, max_length=64)
    scope: str = Field(index=True, max_length=140)
    hashed_secret: str = Field(max_length=128)
    issued_at: int = Field(sa_column=Column(BigInteger, nullable=False))
    expires_at: int = Field(sa_column=Column(BigInteger, nullable=False, index=True))
    attempts: int = Field(default=0)
    status: str = Field(
        default=OtpStatus.PENDING.value,
        sa_column=Column(String(20), nullable=False, default=OtpStatus.PENDING.value),
    )
