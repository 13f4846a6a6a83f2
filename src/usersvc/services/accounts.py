"""Account, role and profile persistence helpers."""

import asyncio
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, or_, select

from usersvc.errors import DuplicateError, NotFound
from usersvc.models import (
    ADMIN_ROLE,
    DEFAULT_ROLES,
    AuthProvider,
    Profile,
    Role,
    User,
    UserRole,
    UserStatus,
)
from usersvc.services.hashing import hash_password

logger = logging.getLogger(__name__)

UNIQUE_FIELDS = ("username", "email", "phone")


async def get_user_by_id(session: AsyncSession, user_id: str) -> User | None:
    return await session.get(User, user_id)


async def get_user_by_phone(session: AsyncSession, phone: str) -> User | None:
    result = await session.execute(select(User).where(User.phone == phone))
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def get_user_by_username(session: AsyncSession, username: str) -> User | None:
    result = await session.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def require_user(session: AsyncSession, user_id: str) -> User:
    user = await get_user_by_id(session, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def find_duplicate_field(
    session: AsyncSession,
    username: str | None = None,
    email: str | None = None,
    phone: str | None = None,
) -> str | None:
    """Name of the first unique field already taken by another account."""
    values = {"username": username, "email": email, "phone": phone}
    clauses = [getattr(User, name) == value for name, value in values.items() if value]
    if not clauses:
        return None

    result = await session.execute(select(User).where(or_(*clauses)))
    for existing in result.scalars():
        for name in UNIQUE_FIELDS:
            if values[name] and getattr(existing, name) == values[name]:
                return name
    return None


def duplicate_field_from_integrity_error(error: IntegrityError) -> str | None:
    """Work out which unique column a failed insert collided with."""
    text = str(error.orig).lower()
    for name in UNIQUE_FIELDS:
        if name in text:
            return name
    return None


def duplicate_error(field: str) -> DuplicateError:
    return DuplicateError(f"{field.capitalize()} is already taken.", field=field)


async def create_user(
    session: AsyncSession,
    *,
    username: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    password: str | None = None,
    auth_provider: AuthProvider = AuthProvider.PASSWORD,
    status: UserStatus = UserStatus.ACTIVE,
    is_verified: bool = False,
    full_name: str | None = None,
) -> User:
    """Create a user with an empty profile and the default ``user`` role.

    Raises ``DuplicateError`` naming the field when a unique value is taken,
    whether that is caught up front or by the database constraint.
    """
    email = email.lower() if email else None

    taken = await find_duplicate_field(session, username=username, email=email, phone=phone)
    if taken:
        raise duplicate_error(taken)

    # bcrypt runs off the event loop
    password_hash = await asyncio.to_thread(hash_password, password) if password else None

    user = User(
        username=username,
        email=email,
        phone=phone,
        password_hash=password_hash,
        auth_provider=auth_provider.value,
        status=status.value,
        is_verified=is_verified,
    )
    session.add(user)
    try:
        await session.flush()
        session.add(Profile(user_id=user.id, full_name=full_name))
        role = await get_or_create_role(session, "user")
        session.add(UserRole(user_id=user.id, role_id=role.id))
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        field = duplicate_field_from_integrity_error(e)
        if field is None:
            raise
        raise duplicate_error(field) from e

    logger.info(f"Created user {user.id} via {auth_provider.value}")
    return user


async def get_profile(session: AsyncSession, user_id: str) -> Profile | None:
    result = await session.execute(select(Profile).where(Profile.user_id == user_id))
    return result.scalar_one_or_none()


async def get_user_role_names(session: AsyncSession, user_id: str) -> list[str]:
    stmt = (
        select(Role.name)
        .join(UserRole, col(UserRole.role_id) == Role.id)
        .where(UserRole.user_id == user_id)
        .order_by(Role.name)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def is_admin(session: AsyncSession, user_id: str) -> bool:
    return ADMIN_ROLE in await get_user_role_names(session, user_id)


async def get_role_by_name(session: AsyncSession, name: str) -> Role | None:
    result = await session.execute(select(Role).where(Role.name == name))
    return result.scalar_one_or_none()


async def get_or_create_role(session: AsyncSession, name: str) -> Role:
    """Fetch a role, adding it to the session if missing. Caller commits."""
    role = await get_role_by_name(session, name)
    if role is None:
        role = Role(name=name)
        session.add(role)
        await session.flush()
    return role


async def seed_default_roles(session: AsyncSession) -> list[str]:
    """Create any missing default roles. Returns the names that were added."""
    created = []
    for name in DEFAULT_ROLES:
        if await get_role_by_name(session, name) is None:
            session.add(Role(name=name))
            created.append(name)
    await session.commit()
    return created


async def assign_role(session: AsyncSession, user_id: str, role_name: str) -> bool:
    """Grant a role. Returns False if the user already had it."""
    role = await get_role_by_name(session, role_name)
    if role is None:
        raise NotFound(f"Role '{role_name}' not found")

    result = await session.execute(
        select(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role.id)
    )
    if result.scalar_one_or_none() is not None:
        return False

    session.add(UserRole(user_id=user_id, role_id=role.id))
    await session.commit()
    logger.info(f"Assigned role {role_name} to user {user_id}")
    return True


async def revoke_role(session: AsyncSession, user_id: str, role_name: str) -> bool:
    """Remove a role grant. Returns False if the user did not have it."""
    role = await get_role_by_name(session, role_name)
    if role is None:
        raise NotFound(f"Role '{role_name}' not found")

    result = await session.execute(
        select(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role.id)
    )
    grant = result.scalar_one_or_none()
    if grant is None:
        return False

    await session.delete(grant)
    await session.commit()
    logger.info(f"Revoked role {role_name} from user {user_id}")
    return True
