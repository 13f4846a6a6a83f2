"""Profile endpoints for the current user."""

from fastapi import APIRouter

from usersvc.api.deps import CurrentUser, SessionDep
from usersvc.errors import NotFound
from usersvc.models import Profile
from usersvc.schemas.accounts import ProfileRead, ProfileUpdate
from usersvc.schemas.common import ApiModel
from usersvc.services import accounts

router = APIRouter()


class ProfileResponse(ApiModel):
    success: bool = True
    message: str | None = None
    profile: ProfileRead


@router.get("", response_model=ProfileResponse)
async def get_my_profile(user: CurrentUser, session: SessionDep):
    profile = await accounts.get_profile(session, user.id)
    if profile is None:
        raise NotFound("Profile not found")
    return ProfileResponse(profile=ProfileRead.model_validate(profile))


@router.put("", response_model=ProfileResponse)
async def update_my_profile(body: ProfileUpdate, user: CurrentUser, session: SessionDep):
    """Update the current user's profile, creating it if it does not exist yet."""
    profile = await accounts.get_profile(session, user.id)
    if profile is None:
        profile = Profile(user_id=user.id)

    for field, value in body.changes().items():
        setattr(profile, field, value)

    session.add(profile)
    await session.commit()
    await session.refresh(profile)
    return ProfileResponse(
        message="Profile updated",
        profile=ProfileRead.model_validate(profile),
    )
