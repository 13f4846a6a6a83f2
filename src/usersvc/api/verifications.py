"""Document verification endpoints."""

from typing import Literal

from fastapi import APIRouter, status
from pydantic import Field, HttpUrl, field_validator

from usersvc.api.deps import AdminUser, CurrentUser, SessionDep
from usersvc.models import VerificationStatus, VerificationType
from usersvc.schemas.accounts import VerificationRead, sanitize_text
from usersvc.schemas.common import ApiModel
from usersvc.services import accounts
from usersvc.services import verification as verification_service

router = APIRouter()


class VerificationCreate(ApiModel):
    type: VerificationType
    document_url: HttpUrl | None = None
    notes: str | None = Field(default=None, max_length=1000)

    @field_validator("notes")
    @classmethod
    def _sanitize(cls, value: str | None) -> str | None:
        return sanitize_text(value)


class VerificationReview(ApiModel):
    status: Literal["approved", "rejected"]
    notes: str | None = Field(default=None, max_length=1000)

    @field_validator("notes")
    @classmethod
    def _sanitize(cls, value: str | None) -> str | None:
        return sanitize_text(value)


class VerificationResponse(ApiModel):
    success: bool = True
    message: str | None = None
    verification: VerificationRead


class VerificationList(ApiModel):
    success: bool = True
    items: list[VerificationRead]


def _as_list(verifications) -> VerificationList:
    return VerificationList(items=[VerificationRead.model_validate(v) for v in verifications])


@router.post("", response_model=VerificationResponse, status_code=status.HTTP_201_CREATED)
async def submit_verification(body: VerificationCreate, user: CurrentUser, session: SessionDep):
    """Submit a document for review."""
    verification = await verification_service.submit_verification(
        session,
        user.id,
        body.type,
        document_url=str(body.document_url) if body.document_url else None,
        notes=body.notes,
    )
    return VerificationResponse(
        message="Verification submitted",
        verification=VerificationRead.model_validate(verification),
    )


@router.get("", response_model=VerificationList)
async def list_my_verifications(user: CurrentUser, session: SessionDep):
    return _as_list(await verification_service.list_verifications(session, user_id=user.id))


@router.get("/pending", response_model=VerificationList)
async def list_pending_verifications(session: SessionDep, _user: AdminUser):
    """Requests awaiting review (admin only)."""
    return _as_list(
        await verification_service.list_verifications(
            session, status=VerificationStatus.PENDING
        )
    )


@router.put("/{verification_id}", response_model=VerificationResponse)
async def review_verification(
    verification_id: str,
    body: VerificationReview,
    session: SessionDep,
    admin: AdminUser,
):
    """Approve or reject a request (admin only)."""
    verification = await verification_service.review_verification(
        session,
        verification_id,
        reviewer_id=admin.id,
        status=VerificationStatus(body.status),
        notes=body.notes,
    )
    return VerificationResponse(
        message=f"Verification {verification.status}",
        verification=VerificationRead.model_validate(verification),
    )


@router.get("/user/{user_id}", response_model=VerificationList)
async def list_user_verifications(user_id: str, session: SessionDep, _user: AdminUser):
    """All requests for one user (admin only)."""
    await accounts.require_user(session, user_id)
    return _as_list(await verification_service.list_verifications(session, user_id=user_id))
