"""
routing.py — Inbound message routing engine.

Every inbound SMS is classified by its sender's role set and then either
escalated to the admins or broadcast to the subscribers.

═══════════════════════════════════════════════════════════════════════════
ROUTING FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌──────────────────────┐
    │ Inbound (from, body) │
    └──────────┬───────────┘
               ▼
    ┌──────────────────────┐   not found      ┌────────────────────────┐
    │  1. Lookup sender    │ ───────────────► │ UNTRUSTED → escalate   │
    └──────────┬───────────┘                  │ (no confirmation)      │
               ▼                              └────────────────────────┘
    ┌──────────────────────┐   STAFF / ADMIN  ┌────────────────────────┐
    │  2. Inspect roles    │ ───────────────► │ TRUSTED_ORIGINATOR     │
    └──────────┬───────────┘                  │ → broadcast + confirm  │
               │ otherwise                    └────────────────────────┘
               ▼
    ┌──────────────────────────────────────┐
    │ SUBSCRIBER_ONLY → escalate + confirm │
    └──────────────────────────────────────┘

Failure policy:
    • The confirmation is sent only after the fan-out fully succeeded.
    • Any failed fan-out send raises GatewaySendFailure (the sends that
      did succeed stay delivered).
    • A failed confirmation also raises GatewaySendFailure.

The engine keeps no state between messages.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from backend.app.alerts.dispatcher import FanOutDispatcher
from backend.app.alerts.models import (
    RoutingAction,
    RoutingOutcome,
    SenderClass,
)
from backend.app.core.errors import GatewaySendFailure
from backend.app.core.logging_config import mask_phone
from backend.app.directory.contacts import ContactDirectory
from backend.app.directory.models import Contact, Role

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Message Templates
# ═══════════════════════════════════════════════════════════════════════════

ESCALATION_TEMPLATE = "Message from {sender}:\n{body}"
BROADCAST_TEMPLATE = "Broadcast from {sender}:\n{body}"
FORWARDED_CONFIRMATION = "Your message has been forwarded to the administrators."
BROADCAST_CONFIRMATION = "Your message has been broadcast to all subscribers."


# ═══════════════════════════════════════════════════════════════════════════
# Classification
# ═══════════════════════════════════════════════════════════════════════════

def classify_sender(contact: Optional[Contact]) -> SenderClass:
    """Map a (possibly absent) directory contact to its sender class."""
    if contact is None:
        return SenderClass.UNTRUSTED
    if contact.is_originator:
        return SenderClass.TRUSTED_ORIGINATOR
    return SenderClass.SUBSCRIBER_ONLY


def _unique_phones(contacts: Iterable[Contact], *, exclude: Optional[str] = None) -> List[str]:
    """Phone numbers in first-seen order, without duplicates or ``exclude``."""
    seen = set()
    phones = []
    for contact in contacts:
        phone = contact.phone_number
        if phone == exclude or phone in seen:
            continue
        seen.add(phone)
        phones.append(phone)
    return phones


# ═══════════════════════════════════════════════════════════════════════════
# Engine
# ═══════════════════════════════════════════════════════════════════════════

class RoutingEngine:
    """Classifies inbound messages and drives escalation or broadcast."""

    def __init__(self, directory: ContactDirectory, dispatcher: FanOutDispatcher):
        self.directory = directory
        self.dispatcher = dispatcher

    async def route(self, sender_phone: str, body: str) -> RoutingOutcome:
        """
        Route one inbound message.

        Parameters
        ----------
        sender_phone : str
            The sender's phone number as reported by the gateway.
        body : str
            Message text.

        Returns
        -------
        RoutingOutcome

        Raises
        ------
        GatewaySendFailure
            If any fan-out send or the confirmation failed.
        StoreUnavailableError
            If the directory could not be read.
        """
        sender = await self.directory.find_by_phone(sender_phone)
        sender_class = classify_sender(sender)

        if sender_class == SenderClass.TRUSTED_ORIGINATOR:
            outcome = await self._broadcast(sender, body)
        else:
            outcome = await self._escalate(sender_phone, body, sender_class)

        if sender is not None:
            confirmation_text = (
                BROADCAST_CONFIRMATION
                if outcome.action == RoutingAction.BROADCAST
                else FORWARDED_CONFIRMATION
            )
            confirmation = await self.dispatcher.send_one(sender_phone, confirmation_text)
            outcome.confirmation = confirmation
            if not confirmation.ok:
                raise GatewaySendFailure(
                    [confirmation],
                    message=f"Confirmation to sender failed: {confirmation.error_message}",
                )

        logger.info(
            "Routed message from %s as %s → %s to %d recipient(s)",
            mask_phone(sender_phone),
            sender_class.value,
            outcome.action.value,
            len(outcome.dispatch.results),
            extra={
                "sender_class": sender_class.value,
                "action": outcome.action.value,
                "recipient_count": len(outcome.dispatch.results),
            },
        )
        return outcome

    async def _escalate(
        self,
        sender_phone: str,
        body: str,
        sender_class: SenderClass,
    ) -> RoutingOutcome:
        admins = await self.directory.list_by_role(Role.ADMIN)
        recipients = _unique_phones(admins)
        if not recipients:
            logger.warning("No ADMIN contacts to escalate to; message dropped")

        text = ESCALATION_TEMPLATE.format(sender=sender_phone, body=body)
        dispatch = await self.dispatcher.dispatch(recipients, text)
        dispatch.raise_for_failures()

        return RoutingOutcome(
            sender_class=sender_class,
            action=RoutingAction.ESCALATE,
            dispatch=dispatch,
        )

    async def _broadcast(self, sender: Contact, body: str) -> RoutingOutcome:
        subscribers = await self.directory.list_by_role(Role.SUBSCRIBER)
        recipients = _unique_phones(subscribers, exclude=sender.phone_number)

        text = BROADCAST_TEMPLATE.format(
            sender=sender.name or sender.phone_number, body=body,
        )
        dispatch = await self.dispatcher.dispatch(recipients, text)
        dispatch.raise_for_failures()

        return RoutingOutcome(
            sender_class=SenderClass.TRUSTED_ORIGINATOR,
            action=RoutingAction.BROADCAST,
            dispatch=dispatch,
        )
