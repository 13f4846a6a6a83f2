"""Read and update schemas for users, profiles, roles and verifications."""

import re
from datetime import datetime
from typing import Any

from pydantic import Field, HttpUrl, field_validator

from usersvc.models import Gender
from usersvc.schemas.common import ApiModel

_TAGS = re.compile(r"<[^>]*>")


def sanitize_text(value: Any) -> Any:
    """Strip HTML tags and stray angle brackets from free text."""
    if not isinstance(value, str):
        return value
    return _TAGS.sub("", value).replace("<", "").replace(">", "").strip()


class ProfileRead(ApiModel):
    id: str
    user_id: str
    full_name: str | None = None
    bio: str | None = None
    profession: str | None = None
    languages: list[str] | None = None
    photo_url: str | None = None
    gender: str | None = None
    age: int | None = None
    religion: str | None = None
    ethnicity: str | None = None
    education: str | None = None
    interests: list[str] | None = None
    rating_avg: float = 0.0
    rating_count: int = 0
    verification_status: str
    created_at: datetime
    updated_at: datetime


class ProfileUpdate(ApiModel):
    """Fields a user may set on their own profile. Omitted fields are left alone."""

    full_name: str | None = Field(default=None, max_length=160)
    bio: str | None = Field(default=None, max_length=1000)
    profession: str | None = Field(default=None, max_length=120)
    languages: list[str] | None = Field(default=None, max_length=10)
    photo_url: HttpUrl | None = None
    gender: Gender | None = None
    age: int | None = Field(default=None, ge=18, le=120)
    religion: str | None = Field(default=None, max_length=100)
    ethnicity: str | None = Field(default=None, max_length=100)
    education: str | None = Field(default=None, max_length=120)
    interests: list[str] | None = Field(default=None, max_length=20)

    @field_validator("full_name", "bio", "profession", "religion", "ethnicity", "education")
    @classmethod
    def _sanitize(cls, value: str | None) -> str | None:
        return sanitize_text(value)

    @field_validator("languages")
    @classmethod
    def _check_languages(cls, value: list[str] | None) -> list[str] | None:
        if value is not None and any(len(item) > 10 for item in value):
            raise ValueError("Language codes cannot exceed 10 characters")
        return value

    @field_validator("interests")
    @classmethod
    def _check_interests(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return value
        cleaned = [sanitize_text(item) for item in value]
        if any(len(item) > 50 for item in cleaned):
            raise ValueError("Interests cannot exceed 50 characters each")
        return cleaned

    def changes(self) -> dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        if data.get("photo_url") is not None:
            data["photo_url"] = str(data["photo_url"])
        if data.get("gender") is not None:
            data["gender"] = Gender(data["gender"]).value
        return data


class UserRead(ApiModel):
    id: str
    username: str | None = None
    email: str | None = None
    phone: str | None = None
    auth_provider: str
    is_verified: bool
    status: str
    last_login: datetime | None = None
    created_at: datetime
    roles: list[str] = []
    profile: ProfileRead | None = None


class RoleRead(ApiModel):
    id: str
    name: str
    created_at: datetime


class VerificationRead(ApiModel):
    id: str
    user_id: str
    type: str
    document_url: str | None = None
    status: str
    notes: str | None = None
    verified_by: str | None = None
    verified_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class SmsAttemptRead(ApiModel):
    id: str
    user_id: str | None = None
    phone: str
    action: str
    sent: bool
    provider_info: dict[str, Any] | None = None
    created_at: datetime
