"""User administration endpoints."""

from typing import Annotated, Literal

from fastapi import APIRouter, Query
from sqlalchemy import func
from sqlmodel import col, or_, select

from usersvc.api.deps import AdminUser, CurrentUser, SessionDep
from usersvc.api.utils import build_user_read
from usersvc.errors import Forbidden
from usersvc.models import User, UserStatus
from usersvc.schemas.accounts import UserRead
from usersvc.schemas.common import ApiModel, PaginatedResponse
from usersvc.services import accounts

router = APIRouter()


class UserStatusUpdate(ApiModel):
    status: Literal["active", "inactive", "suspended"]


class UserStats(ApiModel):
    success: bool = True
    total: int
    verified: int
    by_status: dict[str, int]
    by_auth_provider: dict[str, int]


class UserResponse(ApiModel):
    success: bool = True
    user: UserRead


@router.get("", response_model=PaginatedResponse[UserRead])
async def list_users(
    session: SessionDep,
    _user: AdminUser,
    offset: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    status: Annotated[UserStatus | None, Query()] = None,
    search: Annotated[str | None, Query(max_length=100)] = None,
):
    """List users, newest first (admin only)."""
    stmt = select(User)
    if status is not None:
        stmt = stmt.where(User.status == status.value)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                col(User.username).ilike(pattern),
                col(User.email).ilike(pattern),
                col(User.phone).ilike(pattern),
            )
        )

    total_result = await session.execute(select(func.count()).select_from(stmt.subquery()))
    total = total_result.scalar() or 0

    result = await session.execute(
        stmt.order_by(col(User.created_at).desc()).offset(offset).limit(limit)
    )
    items = [
        await build_user_read(session, user, include_profile=False)
        for user in result.scalars().all()
    ]
    return PaginatedResponse[UserRead](items=items, total=total, offset=offset, limit=limit)


@router.get("/stats/summary", response_model=UserStats)
async def user_stats(session: SessionDep, _user: AdminUser):
    """Account counts by status and sign-up method (admin only)."""
    status_rows = await session.execute(
        select(User.status, func.count()).group_by(User.status)  # type: ignore[arg-type]
    )
    by_status = {s.value: 0 for s in UserStatus}
    by_status.update({row[0]: row[1] for row in status_rows.all()})

    provider_rows = await session.execute(
        select(User.auth_provider, func.count()).group_by(User.auth_provider)  # type: ignore[arg-type]
    )
    by_provider = {row[0]: row[1] for row in provider_rows.all()}

    verified_result = await session.execute(
        select(func.count()).select_from(User).where(col(User.is_verified).is_(True))
    )

    return UserStats(
        total=sum(by_status.values()),
        verified=verified_result.scalar() or 0,
        by_status=by_status,
        by_auth_provider=by_provider,
    )


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, session: SessionDep, user: CurrentUser):
    """Get a user. Users may read themselves; admins may read anyone."""
    if user_id != user.id and not await accounts.is_admin(session, user.id):
        raise Forbidden("You can only view your own account")

    target = await accounts.require_user(session, user_id)
    return UserResponse(user=await build_user_read(session, target))


@router.patch("/{user_id}/status", response_model=UserResponse)
async def update_user_status(
    user_id: str,
    body: UserStatusUpdate,
    session: SessionDep,
    _user: AdminUser,
):
    """Activate, deactivate or suspend an account (admin only)."""
    target = await accounts.require_user(session, user_id)
    target.status = body.status
    session.add(target)
    await session.commit()
    return UserResponse(user=await build_user_read(session, target))
