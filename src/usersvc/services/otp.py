"""One-time password issuance and verification.

Lifecycle of a code for one key (phone, optionally narrowed by a reference):

1. ``generate_and_send`` enforces the request cooldown and any active
   lockout, clears stale records, stores a hashed code as the only pending
   record and hands the plaintext to the SMS backend.
2. ``verify`` spends one attempt per call. A match consumes every record
   for the key; running out of attempts turns the record into a lock that
   lasts ``lockout_seconds``.

All times are epoch milliseconds from an injectable clock.
"""

import asyncio
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from usersvc.config import Settings, settings
from usersvc.errors import InvalidCode, Locked, OtpExpired, OtpNotFound, RateLimited
from usersvc.models import OtpRecord, OtpStatus
from usersvc.services.hashing import generate_code, hash_otp, otp_matches
from usersvc.services.otp_store import OtpKey, OtpStore
from usersvc.services.phone import normalize_phone
from usersvc.services.sms import SmsBackend

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE_TEMPLATE = (
    "Your {company} verification code is: {code}. "
    "Valid for {minutes} minutes. Do not share this code."
)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class OtpConfig:
    """Tunables for the OTP engine."""

    length: int = 6
    expiration_seconds: int = 300
    max_attempts: int = 3
    lockout_seconds: int = 1800
    cooldown_seconds: int = 30
    retention_hours: int = 24
    sms_timeout_seconds: float = 10.0
    company_name: str = "EthioConnect"
    echo_codes: bool = False

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "OtpConfig":
        source = source or settings
        return cls(
            length=source.otp_length,
            expiration_seconds=source.otp_expiration_seconds,
            max_attempts=source.otp_max_attempts,
            lockout_seconds=source.otp_lockout_seconds,
            cooldown_seconds=source.otp_cooldown_seconds,
            retention_hours=source.otp_retention_hours,
            sms_timeout_seconds=source.sms_timeout_seconds,
            company_name=source.company_name,
            echo_codes=source.otp_echo_enabled,
        )


@dataclass
class OtpIssue:
    """Result of issuing a code. ``code`` is only set when echoing is enabled."""

    phone: str
    sent: bool
    expires_in: int
    provider_info: dict[str, Any] = field(default_factory=dict)
    code: str | None = None


@dataclass
class OtpVerification:
    phone: str
    reference_type: str | None = None
    reference_id: str | None = None
    verified: bool = True


class OtpService:
    """Issue and verify one-time codes."""

    def __init__(
        self,
        store: OtpStore,
        sms: SmsBackend,
        config: OtpConfig | None = None,
        clock: Callable[[], int] = now_ms,
        code_generator: Callable[[int], str] = generate_code,
    ):
        self.store = store
        self.sms = sms
        self.config = config or OtpConfig()
        self.clock = clock
        self.code_generator = code_generator

    def render_message(self, code: str, template: str | None = None) -> str:
        return (template or DEFAULT_MESSAGE_TEMPLATE).format(
            code=code,
            company=self.config.company_name,
            minutes=max(1, self.config.expiration_seconds // 60),
        )

    def _locked_error(self, lock_until: int, now: int) -> Locked:
        remaining_ms = max(0, lock_until - now)
        minutes = max(1, math.ceil(remaining_ms / 60_000))
        return Locked(
            f"Too many failed attempts. Try again in {minutes} minutes.",
            retry_after=max(1, math.ceil(remaining_ms / 1000)),
        )

    async def generate_and_send(
        self,
        phone: str,
        reference_type: str | None = None,
        reference_id: str | None = None,
        message_template: str | None = None,
    ) -> OtpIssue:
        """Issue a new code for the key and try to deliver it by SMS.

        Raises ``InvalidPhone``, ``RateLimited`` (inside the cooldown) or
        ``Locked``. Delivery problems are reported through ``OtpIssue.sent``.
        """
        key = OtpKey(normalize_phone(phone), reference_type, reference_id)
        now = self.clock()

        cooldown_ms = self.config.cooldown_seconds * 1000
        recent = await self.store.find_recent_pending(key, now - cooldown_ms)
        if recent is not None:
            wait = max(1, math.ceil((recent.issued_at + cooldown_ms - now) / 1000))
            raise RateLimited(
                f"Please wait {wait} seconds before requesting a new OTP.",
                retry_after=wait,
            )

        lock = await self.store.find_active_lock(key, now)
        if lock is not None:
            raise self._locked_error(lock.expires_at, now)

        await self.store.delete_stale(key, now)

        code = self.code_generator(self.config.length)
        record = key.new_record(
            hashed_secret=hash_otp(code),
            issued_at=now,
            expires_at=now + self.config.expiration_seconds * 1000,
        )
        await self.store.replace_pending(key, record)
        logger.info(f"OTP issued for {key.phone} (scope {key.scope})")

        sent, provider_info = await self._deliver(key.phone, self.render_message(code, message_template))

        return OtpIssue(
            phone=key.phone,
            sent=sent,
            expires_in=self.config.expiration_seconds,
            provider_info=provider_info,
            code=code if self.config.echo_codes else None,
        )

    async def _deliver(self, phone: str, message: str) -> tuple[bool, dict[str, Any]]:
        """Send the message within the configured bound. Never raises."""
        try:
            result = await asyncio.wait_for(
                self.sms.send(phone, message),
                timeout=self.config.sms_timeout_seconds,
            )
        except TimeoutError:
            logger.warning(
                f"SMS to {phone} timed out after {self.config.sms_timeout_seconds}s"
            )
            return False, {"error": "SMS delivery timed out"}
        except Exception as e:
            logger.error(f"SMS to {phone} failed: {e!r}", exc_info=True)
            return False, {"error": str(e)}

        if not result.success:
            logger.warning(f"SMS to {phone} was not accepted by the provider")
        return result.success, dict(result.provider_info)

    async def verify(
        self,
        phone: str,
        code: str,
        reference_type: str | None = None,
        reference_id: str | None = None,
    ) -> OtpVerification:
        """Check ``code`` against the newest open record for the key.

        Raises ``OtpNotFound``, ``Locked``, ``OtpExpired`` or ``InvalidCode``.
        """
        key = OtpKey(normalize_phone(phone), reference_type, reference_id)
        record = await self.store.find_latest_open(key)
        if record is None:
            raise OtpNotFound()

        now = self.clock()

        if record.status == OtpStatus.LOCKED.value:
            if now <= record.expires_at:
                raise self._locked_error(record.expires_at, now)
            # Lock has run out; the old code is gone for good
            raise OtpNotFound()

        if now > record.expires_at:
            record.status = OtpStatus.EXPIRED.value
            await self.store.save(record)
            raise OtpExpired()

        attempts = await self.store.increment_attempts(record)
        if attempts is None:
            raise OtpNotFound()

        if otp_matches(str(code), record.hashed_secret):
            record.status = OtpStatus.VERIFIED.value
            await self.store.save(record)
            await self.store.delete_for_key(key)
            logger.info(f"OTP verified for {key.phone}")
            return OtpVerification(
                phone=key.phone,
                reference_type=record.reference_type,
                reference_id=record.reference_id,
            )

        if attempts >= self.config.max_attempts:
            await self._lock(record, now)
            raise self._locked_error(record.expires_at, now)

        raise InvalidCode(self.config.max_attempts - attempts)

    async def _lock(self, record: OtpRecord, now: int) -> None:
        record.status = OtpStatus.LOCKED.value
        record.expires_at = now + self.config.lockout_seconds * 1000
        await self.store.save(record)
        logger.warning(f"OTP for {record.phone} locked after {record.attempts} failed attempts")

    async def cleanup_expired(self) -> int:
        """Remove expired records and closed records past the retention window."""
        now = self.clock()
        cutoff = now - self.config.retention_hours * 3600 * 1000
        removed = await self.store.purge(now, cutoff)
        logger.info(f"Removed {removed} stale OTP records")
        return removed
