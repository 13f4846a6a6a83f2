"""Role listing and assignment endpoints."""

from fastapi import APIRouter, status
from pydantic import Field
from sqlmodel import select

from usersvc.api.deps import AdminUser, CurrentUser, SessionDep
from usersvc.errors import DuplicateError, Forbidden
from usersvc.models import ADMIN_ROLE, Role
from usersvc.schemas.accounts import RoleRead
from usersvc.schemas.common import ApiModel
from usersvc.services import accounts

router = APIRouter()

ROLE_NAME_PATTERN = r"^[a-z_]+$"


class RoleCreate(ApiModel):
    name: str = Field(min_length=2, max_length=50, pattern=ROLE_NAME_PATTERN)


class RoleGrant(ApiModel):
    user_id: str = Field(min_length=1)
    role_name: str = Field(min_length=2, max_length=50, pattern=ROLE_NAME_PATTERN)


class RoleList(ApiModel):
    success: bool = True
    roles: list[RoleRead]


class RoleResponse(ApiModel):
    success: bool = True
    role: RoleRead


class RoleGrantResponse(ApiModel):
    success: bool = True
    message: str
    changed: bool


class UserRoles(ApiModel):
    success: bool = True
    user_id: str
    roles: list[str]


@router.get("", response_model=RoleList)
async def list_roles(user: CurrentUser, session: SessionDep):
    """List roles. The admin role is only visible to admins."""
    result = await session.execute(select(Role).order_by(Role.name))
    roles = list(result.scalars().all())
    if not await accounts.is_admin(session, user.id):
        roles = [role for role in roles if role.name != ADMIN_ROLE]
    return RoleList(roles=[RoleRead.model_validate(role) for role in roles])


@router.post("", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(body: RoleCreate, session: SessionDep, _user: AdminUser):
    """Create a role (admin only)."""
    if await accounts.get_role_by_name(session, body.name) is not None:
        raise DuplicateError(f"Role '{body.name}' already exists", field="name")

    role = Role(name=body.name)
    session.add(role)
    await session.commit()
    return RoleResponse(role=RoleRead.model_validate(role))


@router.post("/assign", response_model=RoleGrantResponse)
async def assign_role(body: RoleGrant, session: SessionDep, _user: AdminUser):
    """Grant a role to a user (admin only)."""
    await accounts.require_user(session, body.user_id)
    changed = await accounts.assign_role(session, body.user_id, body.role_name)
    message = "Role assigned" if changed else "User already has this role"
    return RoleGrantResponse(message=message, changed=changed)


@router.delete("/revoke", response_model=RoleGrantResponse)
async def revoke_role(body: RoleGrant, session: SessionDep, _user: AdminUser):
    """Remove a role from a user (admin only)."""
    await accounts.require_user(session, body.user_id)
    changed = await accounts.revoke_role(session, body.user_id, body.role_name)
    message = "Role revoked" if changed else "User does not have this role"
    return RoleGrantResponse(message=message, changed=changed)


@router.get("/user/{user_id}", response_model=UserRoles)
async def get_user_roles(user_id: str, user: CurrentUser, session: SessionDep):
    """Role names held by a user. Users may read their own; admins anyone's."""
    if user_id != user.id and not await accounts.is_admin(session, user.id):
        raise Forbidden("You can only view your own roles")

    await accounts.require_user(session, user_id)
    return UserRoles(user_id=user_id, roles=await accounts.get_user_role_names(session, user_id))
