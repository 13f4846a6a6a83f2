"""SMS delivery backends."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from usersvc.config import settings
from usersvc.errors import SmsConfigurationError
from usersvc.services.phone import format_phone_for_display, phone_digits
from usersvc.services.resilience import CircuitOpenError, sms_circuit, with_resilience

logger = logging.getLogger(__name__)


@dataclass
class SmsResult:
    """Outcome of a delivery attempt. ``provider_info`` never contains the message."""

    success: bool
    provider_info: dict[str, Any] = field(default_factory=dict)
    message_id: str | None = None


class SmsBackend(ABC):
    """Abstract base class for SMS backends."""

    name: str = "abstract"

    @abstractmethod
    async def send(self, phone: str, message: str) -> SmsResult:
        """Deliver ``message`` to ``phone``.

        Provider failures are reported through ``SmsResult.success`` rather
        than raised.
        """
        pass


class ConsoleSmsBackend(SmsBackend):
    """SMS backend that logs to console (for development)."""

    name = "console"

    async def send(self, phone: str, message: str) -> SmsResult:
        logger.info(
            f"\n{'=' * 60}\n"
            f"SMS (console backend - not sent)\n"
            f"{'=' * 60}\n"
            f"To: {format_phone_for_display(phone)}\n"
            f"{'=' * 60}\n"
            f"{message}\n"
            f"{'=' * 60}\n"
        )
        return SmsResult(success=True, provider_info={"provider": self.name})


class GeezSmsBackend(SmsBackend):
    """SMS backend using the GeezSMS HTTP API."""

    name = "geezsms"

    def __init__(
        self,
        base_url: str,
        token: str,
        sender_id: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.sender_id = sender_id
        self.timeout = timeout
        self._transport = transport

    def build_payload(self, phone: str, message: str) -> dict[str, str]:
        payload = {"phone": phone_digits(phone), "msg": message}
        if self.sender_id:
            # Numeric ids are registered sender ids, anything else is a sender name
            key = "sender_id" if self.sender_id.isdigit() else "sender"
            payload[key] = self.sender_id
        return payload

    @with_resilience(circuit_breaker=sms_circuit)
    async def _post(self, payload: dict[str, str]) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.base_url}/sms/send",
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "X-GeezSMS-Key": self.token,
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                json=payload,
            )
            response.raise_for_status()
            return response.json()

    async def send(self, phone: str, message: str) -> SmsResult:
        try:
            data = await self._post(self.build_payload(phone, message))
        except CircuitOpenError as e:
            logger.warning(f"GeezSMS skipped for {phone}: {e}")
            return SmsResult(success=False, provider_info={"provider": self.name, "error": str(e)})
        except httpx.HTTPStatusError as e:
            logger.error(f"GeezSMS API error: {e.response.status_code} - {e.response.text[:500]}")
            return SmsResult(
                success=False,
                provider_info={
                    "provider": self.name,
                    "status": e.response.status_code,
                    "error": e.response.text[:500],
                },
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to send SMS via GeezSMS to {phone}: {e!r}")
            return SmsResult(success=False, provider_info={"provider": self.name, "error": str(e)})

        if isinstance(data, dict) and data.get("error") is False:
            log_id = data.get("api_log_id")
            logger.info(f"SMS sent via GeezSMS to {phone} (log id {log_id})")
            return SmsResult(
                success=True,
                provider_info={"provider": self.name, "apiLogId": log_id},
                message_id=str(log_id) if log_id is not None else None,
            )

        # The raw body is never logged or returned
        body = data if isinstance(data, dict) else {}
        status = body.get("status")
        error = body.get("msg") or body.get("message") or "Rejected by provider"
        logger.error(f"GeezSMS rejected message to {phone}: status={status} error={error}")
        return SmsResult(
            success=False,
            provider_info={"provider": self.name, "status": status, "error": error},
        )


def get_sms_backend() -> SmsBackend:
    """Get the configured SMS backend."""
    if settings.sms_backend == "console":
        return ConsoleSmsBackend()
    elif settings.sms_backend == "geezsms":
        if not settings.sms_base_url or not settings.sms_token:
            raise SmsConfigurationError("SMS provider not configured")
        return GeezSmsBackend(
            base_url=settings.sms_base_url,
            token=settings.sms_token,
            sender_id=settings.sms_sender_id,
            timeout=settings.sms_timeout_seconds,
        )
    else:
        raise SmsConfigurationError(f"Unknown SMS backend: {settings.sms_backend}")
