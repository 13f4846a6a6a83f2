"""Log of outbound OTP SMS attempts."""

from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from usersvc.models.base import TimestampMixin, generate_nanoid


class SmsAttempt(TimestampMixin, SQLModel, table=True):
    """One OTP delivery attempt. Never stores the code itself."""

    __tablename__ = "sms_attempts"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    user_id: str | None = Field(
        default=None, foreign_key="users.id", index=True, max_length=21, ondelete="SET NULL"
    )
    phone: str = Field(index=True, max_length=20)
    action: str = Field(max_length=30)
    sent: bool = Field(default=False)
    provider_info: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
