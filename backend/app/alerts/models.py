"""
models.py — Shared data structures for inbound routing and SMS fan-out.

Defines:
    • DeliveryStatus — outcome of one gateway send
    • SenderClass    — trust class of an inbound sender
    • RoutingAction  — what the routing engine did with a message
    • SendResult     — one send to one recipient
    • DispatchResult — per-recipient results of one fan-out
    • RoutingOutcome — everything that happened for one inbound message

═══════════════════════════════════════════════════════════════════════════
SENDER CLASSIFICATION
═══════════════════════════════════════════════════════════════════════════

    Sender in directory?   Roles                  Class                 Action
    ────────────────────   ────────────────────   ───────────────────   ─────────
    no                     —                      UNTRUSTED             ESCALATE
    yes                    contains STAFF/ADMIN   TRUSTED_ORIGINATOR    BROADCAST
    yes                    anything else          SUBSCRIBER_ONLY       ESCALATE

Confirmation back to the sender is owed only to senders that are in the
directory (TRUSTED_ORIGINATOR, SUBSCRIBER_ONLY).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from backend.app.core.errors import GatewaySendFailure


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class DeliveryStatus(str, Enum):
    """Outcome of a single gateway send."""
    DELIVERED = "delivered"   # accepted by the gateway
    FAILED    = "failed"      # rejected or transport error


class SenderClass(str, Enum):
    """Trust class of an inbound sender."""
    UNTRUSTED          = "untrusted"
    SUBSCRIBER_ONLY    = "subscriber_only"
    TRUSTED_ORIGINATOR = "trusted_originator"


class RoutingAction(str, Enum):
    ESCALATE  = "escalate"    # to every ADMIN
    BROADCAST = "broadcast"   # to every SUBSCRIBER except the sender


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class SendResult:
    """Record of one send to one recipient."""
    to: str
    status: DeliveryStatus = DeliveryStatus.DELIVERED
    attempted_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    provider_response: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "to": self.to,
            "status": self.status.value,
            "attempted_at": self.attempted_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "error_message": self.error_message,
        }


@dataclass
class DispatchResult:
    """Per-recipient outcome of one fan-out, in recipient order."""
    results: List[SendResult] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        """True if every send succeeded (vacuously true for no recipients)."""
        return all(r.ok for r in self.results)

    @property
    def delivered(self) -> List[SendResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> List[SendResult]:
        return [r for r in self.results if not r.ok]

    @property
    def recipients(self) -> List[str]:
        return [r.to for r in self.results]

    def raise_for_failures(self) -> None:
        """Raise GatewaySendFailure if any send failed."""
        if not self.ok:
            raise GatewaySendFailure(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "attempted": len(self.results),
            "delivered": len(self.delivered),
            "failed": len(self.failed),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class RoutingOutcome:
    """What the routing engine did with one inbound message."""
    sender_class: SenderClass
    action: RoutingAction
    dispatch: DispatchResult
    confirmation: Optional[SendResult] = None

    @property
    def confirmed(self) -> bool:
        return self.confirmation is not None and self.confirmation.ok

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sender_class": self.sender_class.value,
            "action": self.action.value,
            "dispatch": self.dispatch.to_dict(),
            "confirmation": (
                self.confirmation.to_dict() if self.confirmation else None
            ),
        }
