"""Document verification workflow."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from usersvc.errors import NotFound, ValidationError
from usersvc.models import (
    PROFESSIONAL_TYPES,
    Profile,
    Verification,
    VerificationLevel,
    VerificationStatus,
    VerificationType,
    utcnow,
)

logger = logging.getLogger(__name__)


def verification_level(approved_types: set[str]) -> VerificationLevel:
    """Profile level implied by the set of approved verification types."""
    has_kyc = VerificationType.KYC.value in approved_types
    has_professional = bool(approved_types & PROFESSIONAL_TYPES)
    if has_kyc and has_professional:
        return VerificationLevel.FULL
    if has_professional:
        return VerificationLevel.PROFESSIONAL
    if has_kyc:
        return VerificationLevel.KYC
    return VerificationLevel.NONE


async def submit_verification(
    session: AsyncSession,
    user_id: str,
    type: VerificationType,
    document_url: str | None = None,
    notes: str | None = None,
) -> Verification:
    """Open a pending request. Only one pending request per type is allowed."""
    result = await session.execute(
        select(Verification).where(
            Verification.user_id == user_id,
            Verification.type == type.value,
            Verification.status == VerificationStatus.PENDING.value,
        )
    )
    if result.scalars().first() is not None:
        raise ValidationError("You already have a pending verification request of this type")

    verification = Verification(
        user_id=user_id,
        type=type.value,
        document_url=document_url,
        notes=notes,
    )
    session.add(verification)
    await session.commit()
    logger.info(f"User {user_id} submitted {type.value} verification {verification.id}")
    return verification


async def list_verifications(
    session: AsyncSession,
    user_id: str | None = None,
    status: VerificationStatus | None = None,
) -> list[Verification]:
    stmt = select(Verification).order_by(col(Verification.created_at).desc())
    if user_id is not None:
        stmt = stmt.where(Verification.user_id == user_id)
    if status is not None:
        stmt = stmt.where(Verification.status == status.value)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def recompute_verification_status(session: AsyncSession, user_id: str) -> VerificationLevel:
    """Set the profile's verification level from the user's approved requests."""
    result = await session.execute(
        select(Verification.type).where(
            Verification.user_id == user_id,
            Verification.status == VerificationStatus.APPROVED.value,
        )
    )
    level = verification_level(set(result.scalars().all()))

    profile_result = await session.execute(select(Profile).where(Profile.user_id == user_id))
    profile = profile_result.scalar_one_or_none()
    if profile is None:
        profile = Profile(user_id=user_id)
        session.add(profile)
    profile.verification_status = level.value
    return level


async def review_verification(
    session: AsyncSession,
    verification_id: str,
    reviewer_id: str,
    status: VerificationStatus,
    notes: str | None = None,
) -> Verification:
    """Approve or reject a request and refresh the owner's verification level."""
    if status == VerificationStatus.PENDING:
        raise ValidationError("Status must be approved or rejected", field="status")

    verification = await session.get(Verification, verification_id)
    if verification is None:
        raise NotFound("Verification not found")

    verification.status = status.value
    if notes is not None:
        verification.notes = notes
    verification.verified_by = reviewer_id
    verification.verified_at = utcnow()
    session.add(verification)
    await session.flush()

    level = await recompute_verification_status(session, verification.user_id)
    await session.commit()
    logger.info(
        f"Verification {verification.id} {status.value} by {reviewer_id}; "
        f"user {verification.user_id} is now {level.value}"
    )
    return verification
