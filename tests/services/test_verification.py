"""Document verification workflow tests."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from usersvc.errors import NotFound, ValidationError
from usersvc.models import User, VerificationLevel, VerificationStatus, VerificationType
from usersvc.services import accounts
from usersvc.services.verification import (
    list_verifications,
    review_verification,
    submit_verification,
    verification_level,
)


@pytest.mark.parametrize(
    ("approved", "level"),
    [
        (set(), VerificationLevel.NONE),
        ({"kyc"}, VerificationLevel.KYC),
        ({"doctor_license"}, VerificationLevel.PROFESSIONAL),
        ({"kyc", "teacher_cert"}, VerificationLevel.FULL),
        ({"other"}, VerificationLevel.NONE),
    ],
)
def test_verification_level(approved: set[str], level: VerificationLevel):
    assert verification_level(approved) == level


@pytest.mark.asyncio
async def test_one_pending_request_per_type(session: AsyncSession, user: User):
    await submit_verification(session, user.id, VerificationType.KYC)

    with pytest.raises(ValidationError):
        await submit_verification(session, user.id, VerificationType.KYC)

    # A different type is fine
    await submit_verification(session, user.id, VerificationType.DOCTOR_LICENSE)
    assert len(await list_verifications(session, user_id=user.id)) == 2


@pytest.mark.asyncio
async def test_review_updates_profile_level(
    session: AsyncSession, user: User, admin_user: User
):
    kyc = await submit_verification(session, user.id, VerificationType.KYC)
    license_ = await submit_verification(session, user.id, VerificationType.DOCTOR_LICENSE)

    reviewed = await review_verification(
        session, kyc.id, admin_user.id, VerificationStatus.APPROVED, notes="Looks good"
    )
    assert reviewed.status == "approved"
    assert reviewed.verified_by == admin_user.id
    assert reviewed.verified_at is not None
    assert (await accounts.get_profile(session, user.id)).verification_status == "kyc"

    await review_verification(session, license_.id, admin_user.id, VerificationStatus.APPROVED)
    assert (await accounts.get_profile(session, user.id)).verification_status == "full"


@pytest.mark.asyncio
async def test_rejection_keeps_level(session: AsyncSession, user: User, admin_user: User):
    kyc = await submit_verification(session, user.id, VerificationType.KYC)
    await review_verification(session, kyc.id, admin_user.id, VerificationStatus.REJECTED)

    assert (await accounts.get_profile(session, user.id)).verification_status == "none"
    pending = await list_verifications(session, status=VerificationStatus.PENDING)
    assert pending == []


@pytest.mark.asyncio
async def test_review_errors(session: AsyncSession, user: User, admin_user: User):
    with pytest.raises(NotFound):
        await review_verification(session, "missing", admin_user.id, VerificationStatus.APPROVED)

    kyc = await submit_verification(session, user.id, VerificationType.KYC)
    with pytest.raises(ValidationError):
        await review_verification(session, kyc.id, admin_user.id, VerificationStatus.PENDING)
