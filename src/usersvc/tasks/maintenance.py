"""Maintenance background tasks for expired OTPs and refresh tokens."""

import logging
from typing import Any

from usersvc.database import get_session_context
from usersvc.services.otp import OtpConfig, OtpService
from usersvc.services.otp_store import SqlOtpStore
from usersvc.services.sms import ConsoleSmsBackend
from usersvc.services.tokens import TokenConfig, TokenService

logger = logging.getLogger(__name__)

# Timeout for maintenance tasks (10 minutes)
MAINTENANCE_TIMEOUT_SECONDS = 10 * 60


async def cleanup_expired_otps(_ctx: dict[str, Any] | None = None) -> dict[str, Any]:
    """Delete expired OTP records and closed ones past the retention window."""
    async with get_session_context() as session:
        # Purging never sends, so the console backend is enough here
        service = OtpService(SqlOtpStore(session), ConsoleSmsBackend(), OtpConfig.from_settings())
        removed = await service.cleanup_expired()

    logger.info(f"OTP cleanup removed {removed} records")
    return {"removed": removed}


async def cleanup_expired_tokens(_ctx: dict[str, Any] | None = None) -> dict[str, Any]:
    """Delete expired refresh tokens and long-revoked ones."""
    async with get_session_context() as session:
        removed = await TokenService(session, TokenConfig.from_settings()).cleanup_expired_tokens()

    logger.info(f"Refresh token cleanup removed {removed} records")
    return {"removed": removed}
