"""Audit log of OTP SMS attempts."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from usersvc.models import SmsAttempt


async def record_sms_attempt(
    session: AsyncSession,
    *,
    phone: str,
    action: str,
    sent: bool,
    user_id: str | None = None,
    provider_info: dict[str, Any] | None = None,
) -> SmsAttempt:
    attempt = SmsAttempt(
        user_id=user_id,
        phone=phone,
        action=action,
        sent=sent,
        provider_info=provider_info or None,
    )
    session.add(attempt)
    await session.commit()
    return attempt


async def list_sms_attempts(
    session: AsyncSession,
    limit: int = 50,
    user_id: str | None = None,
    phone: str | None = None,
) -> list[SmsAttempt]:
    """Newest attempts first."""
    stmt = select(SmsAttempt).order_by(col(SmsAttempt.created_at).desc()).limit(limit)
    if user_id is not None:
        stmt = stmt.where(SmsAttempt.user_id == user_id)
    if phone is not None:
        stmt = stmt.where(SmsAttempt.phone == phone)
    result = await session.execute(stmt)
    return list(result.scalars().all())
