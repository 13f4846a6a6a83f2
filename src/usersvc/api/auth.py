"""Authentication endpoints: password, phone OTP and refresh tokens."""

import asyncio
from typing import Annotated, Any, Literal

from fastapi import APIRouter, Query, Request, status
from pydantic import EmailStr, Field, field_validator, model_validator

from usersvc.api.deps import (
    AdminUser,
    AuthRateLimit,
    CurrentUser,
    OtpRateLimit,
    OtpServiceDep,
    OtpVerifierDep,
    SessionDep,
    TokenServiceDep,
)
from usersvc.api.utils import build_user_read, phone_field, request_metadata
from usersvc.config import settings
from usersvc.errors import AuthInvalid, Forbidden, NotFound
from usersvc.models import AuthProvider, User, utcnow
from usersvc.schemas.accounts import SmsAttemptRead, UserRead
from usersvc.schemas.common import ApiModel
from usersvc.services import accounts
from usersvc.services.hashing import verify_password
from usersvc.services.otp import OtpIssue, OtpService
from usersvc.services.phone import normalize_phone
from usersvc.services.sms_log import list_sms_attempts, record_sms_attempt
from usersvc.services.tokens import TokenService, build_access_claims

router = APIRouter()

OTP_REFERENCE_TYPE = "User"


class RegisterRequest(ApiModel):
    """Request body for password registration. Email or phone is required."""

    username: str | None = Field(
        default=None, min_length=3, max_length=50, pattern=r"^[a-zA-Z0-9_-]+$"
    )
    email: EmailStr | None = None
    phone: str | None = None
    password: str | None = Field(default=None, max_length=128)
    role: Literal["employer", "employee", "doctor", "user"] | None = None

    @field_validator("email", mode="before")
    @classmethod
    def _blank_email(cls, value: Any) -> Any:
        return None if value == "" else value

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, value: str | None) -> str | None:
        return phone_field(value)

    @model_validator(mode="after")
    def _check_required(self) -> "RegisterRequest":
        if not self.password:
            raise ValueError("Password is required")
        if len(self.password) < 6:
            raise ValueError("Password must be at least 6 characters")
        if not self.email and not self.phone:
            raise ValueError("Email or phone is required")
        return self


class LoginRequest(ApiModel):
    email: EmailStr
    password: str


class PhoneRequest(ApiModel):
    phone: str

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, value: str) -> str:
        normalized = phone_field(value)
        if normalized is None:
            raise ValueError("Phone number is required")
        return normalized


class OtpVerifyRequest(PhoneRequest):
    otp: str = Field(min_length=4, max_length=10, pattern=r"^\d+$")


class RefreshTokenRequest(ApiModel):
    refresh_token: str = Field(min_length=1)


class AuthResponse(ApiModel):
    success: bool = True
    message: str
    user: UserRead
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class OtpResponse(ApiModel):
    success: bool = True
    message: str
    phone: str
    sent: bool
    expires_in: int
    provider_info: dict[str, Any] | None = None
    # Only populated outside production, for local testing
    code: str | None = None


class UserResponse(ApiModel):
    success: bool = True
    user: UserRead


class UsernameAvailability(ApiModel):
    success: bool = True
    username: str
    available: bool


class LogoutResponse(ApiModel):
    success: bool = True
    message: str
    revoked: int


class SmsAttemptList(ApiModel):
    success: bool = True
    items: list[SmsAttemptRead]


async def _auth_response(
    session: SessionDep,
    tokens: TokenService,
    user: User,
    message: str,
    request: Request,
) -> AuthResponse:
    user_read = await build_user_read(session, user)
    profile = await accounts.get_profile(session, user.id)
    pair = await tokens.issue_token_pair(
        user, user_read.roles, profile, metadata=request_metadata(request)
    )
    return AuthResponse(
        message=message,
        user=user_read,
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
    )


def _otp_response(message: str, issue: OtpIssue) -> OtpResponse:
    return OtpResponse(
        message=message,
        phone=issue.phone,
        sent=issue.sent,
        expires_in=issue.expires_in,
        provider_info=None if settings.is_production else issue.provider_info,
        code=issue.code,
    )


async def _mark_logged_in(session: SessionDep, user: User, verified: bool = False) -> None:
    if verified:
        user.is_verified = True
    user.last_login = utcnow()
    session.add(user)
    await session.commit()


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register(
    body: RegisterRequest,
    request: Request,
    session: SessionDep,
    tokens: TokenServiceDep,
    _rate_limit: AuthRateLimit,
):
    """Create an account with a password and return a token pair."""
    user = await accounts.create_user(
        session,
        username=body.username,
        email=body.email,
        phone=body.phone,
        password=body.password,
        auth_provider=AuthProvider.PASSWORD,
    )
    if body.role and body.role != "user":
        await accounts.get_or_create_role(session, body.role)
        await accounts.assign_role(session, user.id, body.role)

    return await _auth_response(session, tokens, user, "User registered successfully", request)


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    request: Request,
    session: SessionDep,
    tokens: TokenServiceDep,
    _rate_limit: AuthRateLimit,
):
    """Log in with email and password."""
    user = await accounts.get_user_by_email(session, body.email)
    if user is None or not await asyncio.to_thread(
        verify_password, body.password, user.password_hash
    ):
        raise AuthInvalid("Invalid email or password")
    if not user.is_active:
        raise Forbidden("Account inactive or suspended")

    await _mark_logged_in(session, user)
    return await _auth_response(session, tokens, user, "Login successful", request)


@router.post("/otp/request", response_model=OtpResponse, response_model_exclude_none=True)
async def request_otp(
    body: PhoneRequest,
    session: SessionDep,
    otp: OtpServiceDep,
    _rate_limit: OtpRateLimit,
):
    """Send a login code to a phone, creating a phone account on first use."""
    user = await accounts.get_user_by_phone(session, body.phone)
    if user is None:
        user = await accounts.create_user(
            session, phone=body.phone, auth_provider=AuthProvider.PHONE
        )

    issue = await _issue_otp(session, otp, user, action="request")
    return _otp_response("OTP generated", issue)


@router.post("/otp/resend", response_model=OtpResponse, response_model_exclude_none=True)
async def resend_otp(
    body: PhoneRequest,
    session: SessionDep,
    otp: OtpServiceDep,
    _rate_limit: OtpRateLimit,
):
    """Send a fresh code to an existing phone account."""
    user = await accounts.get_user_by_phone(session, body.phone)
    if user is None:
        raise NotFound("User not found")

    issue = await _issue_otp(session, otp, user, action="resend")
    return _otp_response("OTP resent", issue)


async def _issue_otp(session: SessionDep, otp: OtpService, user: User, action: str) -> OtpIssue:
    issue = await otp.generate_and_send(
        user.phone or "",
        reference_type=OTP_REFERENCE_TYPE,
        reference_id=user.id,
    )
    await record_sms_attempt(
        session,
        phone=issue.phone,
        action=action,
        sent=issue.sent,
        user_id=user.id,
        provider_info=issue.provider_info,
    )
    return issue


async def _verify_phone_login(
    body: OtpVerifyRequest,
    session: SessionDep,
    otp: OtpService,
    not_found_message: str,
) -> User:
    user = await accounts.get_user_by_phone(session, body.phone)
    if user is None:
        raise NotFound(not_found_message)

    await otp.verify(
        body.phone,
        body.otp,
        reference_type=OTP_REFERENCE_TYPE,
        reference_id=user.id,
    )
    if not user.is_active:
        raise Forbidden("Account inactive or suspended")

    await _mark_logged_in(session, user, verified=True)
    return user


@router.post("/otp/verify", response_model=AuthResponse)
async def verify_otp(
    body: OtpVerifyRequest,
    request: Request,
    session: SessionDep,
    otp: OtpVerifierDep,
    tokens: TokenServiceDep,
    _rate_limit: OtpRateLimit,
):
    """Verify a phone code, mark the account verified and return a token pair."""
    user = await _verify_phone_login(body, session, otp, "User not found")
    return await _auth_response(
        session, tokens, user, "OTP verified, account activated", request
    )


@router.post("/otp/login", response_model=AuthResponse)
async def login_with_otp(
    body: OtpVerifyRequest,
    request: Request,
    session: SessionDep,
    otp: OtpVerifierDep,
    tokens: TokenServiceDep,
    _rate_limit: OtpRateLimit,
):
    """Log in to an existing phone account with a code."""
    user = await _verify_phone_login(body, session, otp, "No account found")
    return await _auth_response(session, tokens, user, "Login with OTP successful", request)


@router.post("/refresh-token", response_model=AuthResponse)
async def refresh_token(
    body: RefreshTokenRequest,
    session: SessionDep,
    tokens: TokenServiceDep,
    _rate_limit: AuthRateLimit,
):
    """Exchange a refresh token for a new access token and a new refresh token."""
    rotated = await tokens.refresh(body.refresh_token)

    user = await accounts.get_user_by_id(session, rotated.record.user_id)
    if user is None:
        raise AuthInvalid("User not found")
    if not user.is_active:
        await tokens.revoke_all_refresh_tokens(user.id)
        raise Forbidden("Account inactive or suspended")

    user_read = await build_user_read(session, user)
    profile = await accounts.get_profile(session, user.id)
    access = tokens.sign_access_token(build_access_claims(user, user_read.roles, profile))
    return AuthResponse(
        message="Access token refreshed",
        user=user_read,
        access_token=access,
        refresh_token=rotated.presented,
        expires_in=int(tokens.config.access_ttl.total_seconds()),
    )


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    body: RefreshTokenRequest,
    user: CurrentUser,
    tokens: TokenServiceDep,
):
    """Revoke one refresh token belonging to the current user."""
    owner_id, raw = tokens.parse_refresh_token(body.refresh_token)
    if owner_id != user.id:
        raise AuthInvalid("Invalid or expired refresh token")

    revoked = await tokens.revoke_refresh_token(raw, user.id)
    return LogoutResponse(message="Logged out", revoked=1 if revoked else 0)


@router.post("/logout-all", response_model=LogoutResponse)
async def logout_all(user: CurrentUser, tokens: TokenServiceDep):
    """Revoke every refresh token of the current user."""
    count = await tokens.revoke_all_refresh_tokens(user.id)
    return LogoutResponse(message="Logged out from all sessions", revoked=count)


@router.get("/me", response_model=UserResponse)
async def get_me(user: CurrentUser, session: SessionDep):
    """Get current user info with roles and profile."""
    return UserResponse(user=await build_user_read(session, user))


@router.get("/check-username/{username}", response_model=UsernameAvailability)
async def check_username(username: str, session: SessionDep):
    existing = await accounts.get_user_by_username(session, username)
    return UsernameAvailability(username=username, available=existing is None)


@router.get("/admin/sms-attempts", response_model=SmsAttemptList)
async def admin_sms_attempts(
    session: SessionDep,
    _user: AdminUser,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    phone: Annotated[str | None, Query()] = None,
):
    """Recent OTP delivery attempts, newest first (admin only)."""
    attempts = await list_sms_attempts(
        session, limit=limit, phone=normalize_phone(phone) if phone else None
    )
    return SmsAttemptList(items=[SmsAttemptRead.model_validate(a) for a in attempts])


@router.get("/debug/my-sms-attempts", response_model=SmsAttemptList)
async def my_sms_attempts(
    session: SessionDep,
    user: CurrentUser,
    limit: Annotated[int, Query(ge=1, le=200)] = 20,
):
    """The current user's OTP delivery attempts. Not available in production."""
    if settings.is_production:
        raise NotFound("Not found")
    attempts = await list_sms_attempts(session, limit=limit, user_id=user.id)
    return SmsAttemptList(items=[SmsAttemptRead.model_validate(a) for a in attempts])
