"""
sms_gateway.py — SMS delivery via gateway integration.

Delivery mechanism:
    • twilio:     HTTP POST to the Twilio Messages REST API
    • simulation: log the message and keep it in an in-process outbox

═══════════════════════════════════════════════════════════════════════════
SMS GATEWAY ARCHITECTURE
═══════════════════════════════════════════════════════════════════════════

    App  →  HTTP POST  →  SMS Gateway API  →  Carrier  →  Handset

    Twilio:
        POST {TWILIO_API_BASE_URL}/Accounts/{SID}/Messages.json
        auth:  HTTP basic (account SID, auth token)
        form:  From, To, Body

Every gateway exposes one coroutine:

    send(to, body) → SendResult

A gateway never raises for a delivery problem: rejections, HTTP errors
and transport errors all come back as a FAILED SendResult carrying the
reason. Retry and fan-out policy live in the dispatcher, not here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import httpx

from backend.app.alerts.models import DeliveryStatus, SendResult
from backend.app.core.config import Settings
from backend.app.core.logging_config import mask_phone

logger = logging.getLogger(__name__)

# GSM 7-bit segment length
SMS_SEGMENT_GSM7 = 160


def _segments(body: str) -> int:
    return 1 + max(len(body) - 1, 0) // SMS_SEGMENT_GSM7


class SmsGateway(Protocol):
    """Outbound SMS capability."""

    async def send(self, to: str, body: str) -> SendResult:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Simulation
# ═══════════════════════════════════════════════════════════════════════════

class SimulatedSmsGateway:
    """
    Development gateway: logs every message and records it in ``outbox``.

    Numbers listed in ``fail_numbers`` are rejected, which lets callers
    exercise partial fan-out failures without a real provider.
    """

    def __init__(self, fail_numbers: Iterable[str] = ()):
        self.outbox: List[Tuple[str, str]] = []
        self.attempts: List[str] = []
        self.fail_numbers = set(fail_numbers)

    def sent_to(self, phone: str) -> List[str]:
        """Bodies delivered to ``phone``, in send order."""
        return [body for to, body in self.outbox if to == phone]

    async def send(self, to: str, body: str) -> SendResult:
        result = SendResult(to=to)
        self.attempts.append(to)

        if to in self.fail_numbers:
            logger.warning("[SMS/sim] Rejected message to %s", mask_phone(to))
            result.status = DeliveryStatus.FAILED
            result.error_message = "Simulated gateway rejection"
        else:
            self.outbox.append((to, body))
            logger.info(
                "[SMS/sim] → %s: %d chars → '%s'",
                mask_phone(to),
                len(body),
                body[:60] + ("..." if len(body) > 60 else ""),
            )
            result.provider_response = {
                "mode": "simulated",
                "segments": _segments(body),
            }

        result.completed_at = datetime.now(timezone.utc)
        return result


# ═══════════════════════════════════════════════════════════════════════════
# Twilio
# ═══════════════════════════════════════════════════════════════════════════

class TwilioSmsGateway:
    """Sends SMS through the Twilio Messages REST API."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        base_url: str = "https://api.twilio.com/2010-04-01",
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.account_sid = account_sid
        self.from_number = from_number
        self._auth = (account_sid, auth_token)
        self._url = f"{base_url.rstrip('/')}/Accounts/{account_sid}/Messages.json"
        self._timeout = timeout_seconds
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                auth=self._auth,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def send(self, to: str, body: str) -> SendResult:
        result = SendResult(to=to)
        client = await self._get_client()
        form: Dict[str, str] = {"From": self.from_number, "To": to, "Body": body}

        try:
            response = await client.post(self._url, data=form)
            response.raise_for_status()
            data = response.json()
            result.provider_response = {
                "mode": "twilio",
                "sid": data.get("sid"),
                "status": data.get("status"),
            }
            logger.info("[SMS/Twilio] Queued %s → %s", data.get("sid"), mask_phone(to))
        except httpx.HTTPStatusError as exc:
            result.status = DeliveryStatus.FAILED
            result.error_message = _twilio_error(exc.response)
            logger.error(
                "[SMS/Twilio] Rejected message to %s: %s",
                mask_phone(to), result.error_message,
            )
        except httpx.HTTPError as exc:
            result.status = DeliveryStatus.FAILED
            result.error_message = f"{type(exc).__name__}: {exc}"
            logger.error("[SMS/Twilio] Transport error for %s: %s", mask_phone(to), exc)

        result.completed_at = datetime.now(timezone.utc)
        return result


def _twilio_error(response: httpx.Response) -> str:
    """Extract Twilio's error message from a non-2xx response."""
    try:
        data = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    code = data.get("code")
    message = data.get("message") or "unknown error"
    return f"HTTP {response.status_code} (code {code}): {message}"


# ═══════════════════════════════════════════════════════════════════════════
# Factory
# ═══════════════════════════════════════════════════════════════════════════

def build_gateway(config: Settings) -> SmsGateway:
    """Build the gateway selected by ``SMS_PROVIDER``."""
    provider = config.SMS_PROVIDER.lower()

    if provider == "simulation":
        return SimulatedSmsGateway()

    if provider == "twilio":
        missing = [
            name for name in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER")
            if not getattr(config, name)
        ]
        if missing:
            raise ValueError(f"SMS_PROVIDER=twilio requires {', '.join(missing)}")
        return TwilioSmsGateway(
            config.TWILIO_ACCOUNT_SID,
            config.TWILIO_AUTH_TOKEN,
            config.TWILIO_PHONE_NUMBER,
            base_url=config.TWILIO_API_BASE_URL,
            timeout_seconds=config.SMS_TIMEOUT_SECONDS,
        )

    raise ValueError(f"Unknown SMS provider: {config.SMS_PROVIDER}")
