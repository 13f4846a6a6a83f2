"""Refresh token records."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from usersvc.models.base import TimestampMixin, generate_nanoid


class RefreshToken(TimestampMixin, SQLModel, table=True):
    """Stored half of a refresh token.

    Only the bcrypt hash of the secret is kept. A record is usable while
    ``revoked_at`` is null and ``expires_at`` is in the future. Rotation
    revokes the record and points ``replaced_by_token_id`` at its successor.
    """

    __tablename__ = "refresh_tokens"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    user_id: str = Field(foreign_key="users.id", index=True, max_length=21, ondelete="CASCADE")
    hashed_token: str = Field(max_length=100)
    expires_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )
    revoked_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    replaced_by_token_id: str | None = Field(default=None, max_length=21)
    token_metadata: dict[str, Any] | None = Field(
        default=None, sa_column=Column("metadata", JSON, nullable=True)
    )
