"""FastAPI dependencies for dependency injection."""

import logging
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from usersvc.config import settings
from usersvc.database import get_session
from usersvc.errors import AuthInvalid, Forbidden, RateLimited
from usersvc.models import User
from usersvc.services import accounts
from usersvc.services.otp import OtpConfig, OtpService
from usersvc.services.otp_store import InMemoryOtpStore, OtpStore, SqlOtpStore
from usersvc.services.rate_limit import RateLimitType, check_rate_limit, rate_limit_headers
from usersvc.services.sms import ConsoleSmsBackend, SmsBackend, get_sms_backend
from usersvc.services.tokens import TokenConfig, TokenService

logger = logging.getLogger(__name__)

# Type alias for database session dependency
SessionDep = Annotated[AsyncSession, Depends(get_session)]

# Security scheme
security = HTTPBearer(auto_error=False)

# Shared by every request when OTP_STORE=memory
_memory_otp_store = InMemoryOtpStore()


def get_memory_otp_store() -> InMemoryOtpStore:
    return _memory_otp_store


def get_otp_store(session: SessionDep) -> OtpStore:
    """OTP store selected by configuration."""
    if settings.otp_store == "memory":
        return _memory_otp_store
    return SqlOtpStore(session)


def get_sms() -> SmsBackend:
    return get_sms_backend()


def get_otp_service(
    store: Annotated[OtpStore, Depends(get_otp_store)],
    sms: Annotated[SmsBackend, Depends(get_sms)],
) -> OtpService:
    return OtpService(store, sms, OtpConfig.from_settings())


def get_otp_verifier(store: Annotated[OtpStore, Depends(get_otp_store)]) -> OtpService:
    """OTP service for checking codes only. Verifying never sends an SMS, so no
    gateway is resolved and a misconfigured provider cannot fail it."""
    return OtpService(store, ConsoleSmsBackend(), OtpConfig.from_settings())


def get_token_service(session: SessionDep) -> TokenService:
    return TokenService(session, TokenConfig.from_settings())


OtpServiceDep = Annotated[OtpService, Depends(get_otp_service)]
OtpVerifierDep = Annotated[OtpService, Depends(get_otp_verifier)]
TokenServiceDep = Annotated[TokenService, Depends(get_token_service)]


async def get_current_user(
    session: SessionDep,
    tokens: TokenServiceDep,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> User:
    """Get current authenticated user or raise 401."""
    if not credentials:
        raise AuthInvalid("Not authenticated")

    claims = tokens.verify_access_token(credentials.credentials)
    user = await accounts.get_user_by_id(session, claims["sub"])
    if user is None:
        logger.debug(f"Token for unknown user {claims['sub']}")
        raise AuthInvalid("User not found")
    if not user.is_active:
        raise Forbidden("Account inactive or suspended")
    return user


async def get_admin_user(
    session: SessionDep,
    user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Get current user and verify they hold the admin role."""
    if not await accounts.is_admin(session, user.id):
        raise Forbidden("Admin access required")
    return user


# Type aliases for common dependencies
CurrentUser = Annotated[User, Depends(get_current_user)]
AdminUser = Annotated[User, Depends(get_admin_user)]


class RateLimitDependency:
    """Dependency class for rate limiting endpoints.

    Usage:
        @router.post("/endpoint")
        async def endpoint(
            rate_limit: Annotated[None, Depends(RateLimitDependency(RateLimitType.AUTH))]
        ):
            ...
    """

    def __init__(self, limit_type: RateLimitType) -> None:
        self.limit_type = limit_type

    async def __call__(self, request: Request) -> None:
        result = await check_rate_limit(request, self.limit_type)

        if not result.success:
            headers = rate_limit_headers(result)
            retry_after = int(headers["Retry-After"])
            raise RateLimited(
                f"Rate limit exceeded. Please try again in {retry_after} seconds.",
                retry_after=retry_after,
                headers=headers,
            )


# Pre-configured rate limit dependencies
AuthRateLimit = Annotated[None, Depends(RateLimitDependency(RateLimitType.AUTH))]
OtpRateLimit = Annotated[None, Depends(RateLimitDependency(RateLimitType.OTP))]
