"""
dispatcher.py — Concurrent SMS fan-out.

═══════════════════════════════════════════════════════════════════════════
FAN-OUT POLICY
═══════════════════════════════════════════════════════════════════════════

    recipients ──┬── send(r1) ──┐
                 ├── send(r2) ──┼── gather ── DispatchResult
                 └── send(rN) ──┘

    • Every recipient is attempted exactly once, all at the same time
      (no batching, no throttling, no retries).
    • The dispatcher waits for every send to settle before returning.
    • A failure never cancels sibling sends, and delivered messages are
      not recalled.
    • The result lists every recipient's SendResult. ``result.ok`` is
      False if any one of them failed; ``raise_for_failures()`` turns
      that into GatewaySendFailure for callers that fail loud.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Sequence

from backend.app.alerts.channels.sms_gateway import SmsGateway
from backend.app.alerts.models import DeliveryStatus, DispatchResult, SendResult
from backend.app.core.logging_config import mask_phone

logger = logging.getLogger(__name__)


class FanOutDispatcher:
    """Sends one body to many recipients through a gateway."""

    def __init__(self, gateway: SmsGateway):
        self.gateway = gateway

    async def send_one(self, to: str, body: str) -> SendResult:
        """Send to a single recipient; gateway exceptions become a FAILED result."""
        try:
            return await self.gateway.send(to, body)
        except Exception as exc:
            # A misbehaving gateway counts as a failed send for that recipient
            logger.exception("Gateway raised while sending to %s", mask_phone(to))
            return SendResult(
                to=to,
                status=DeliveryStatus.FAILED,
                completed_at=datetime.now(timezone.utc),
                error_message=f"{type(exc).__name__}: {exc}",
            )

    async def dispatch(self, recipients: Sequence[str], body: str) -> DispatchResult:
        """
        Send ``body`` to every recipient concurrently.

        Parameters
        ----------
        recipients : sequence of str
            Phone numbers, attempted once each in the given order.
        body : str
            Message text.

        Returns
        -------
        DispatchResult
            One SendResult per recipient, in input order.
        """
        started = datetime.now(timezone.utc)
        results: List[SendResult] = list(
            await asyncio.gather(*(self.send_one(to, body) for to in recipients))
        )
        dispatch = DispatchResult(
            results=results,
            started_at=started,
            completed_at=datetime.now(timezone.utc),
        )

        failed = len(dispatch.failed)
        log = logger.warning if failed else logger.info
        log(
            "Fan-out complete: %d/%d delivered",
            len(results) - failed, len(results),
            extra={"recipient_count": len(results), "failed_count": failed},
        )
        return dispatch
