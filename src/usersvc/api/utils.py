"""Shared API utilities."""

from typing import Any

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from usersvc.errors import InvalidPhone
from usersvc.models import User
from usersvc.schemas.accounts import ProfileRead, UserRead
from usersvc.services import accounts
from usersvc.services.phone import normalize_phone
from usersvc.services.rate_limit import get_client_ip


def phone_field(value: str | None) -> str | None:
    """Pydantic validator body for phone inputs.

    Normalizes to ``+251...``; format problems surface as ``ValueError``
    so they are reported like any other field error.
    """
    if value is None or value == "":
        return None
    try:
        return normalize_phone(value)
    except InvalidPhone as e:
        raise ValueError(e.message) from e


async def build_user_read(
    session: AsyncSession,
    user: User,
    include_profile: bool = True,
) -> UserRead:
    """User with role names and, optionally, the profile attached."""
    roles = await accounts.get_user_role_names(session, user.id)
    profile = await accounts.get_profile(session, user.id) if include_profile else None
    read = UserRead.model_validate(user)
    read.roles = roles
    read.profile = ProfileRead.model_validate(profile) if profile else None
    return read


def request_metadata(request: Request) -> dict[str, Any]:
    """Client details stored alongside refresh tokens."""
    return {
        "ip": get_client_ip(request),
        "userAgent": request.headers.get("user-agent"),
    }
