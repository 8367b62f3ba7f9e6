"""
relay_service.py — The service surface consumed by the HTTP layer.

One RelayService instance wires the contact directory, the SMS gateway,
the fan-out dispatcher and the routing engine together, and exposes:

    handle_inbound(sender_phone, body) → RoutingOutcome
    list_contacts()                    → [Contact]
    get_contact(phone)                 → Contact          | NotFoundError
    create_contact(name, phone, roles) → Contact          | ConflictError
    replace_roles(phone, roles)        → records updated  | NotFoundError
    delete_contact(phone)              → records deleted  (idempotent)

``create_contact`` pre-checks the phone number before inserting. The
check and the insert are separate store calls, so two concurrent creates
for the same number can both succeed; the directory tolerates the
resulting duplicates.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional

from backend.app.alerts.channels.sms_gateway import SmsGateway, build_gateway
from backend.app.alerts.dispatcher import FanOutDispatcher
from backend.app.alerts.models import RoutingOutcome
from backend.app.alerts.routing import RoutingEngine
from backend.app.core.config import Settings, settings
from backend.app.core.errors import ConflictError, NotFoundError
from backend.app.core.logging_config import mask_phone
from backend.app.directory.contacts import ContactDirectory
from backend.app.directory.models import Contact, parse_roles
from backend.app.directory.store import ContactStore, InMemoryContactStore

logger = logging.getLogger(__name__)


class RelayService:
    """Facade over the directory and routing engine."""

    def __init__(self, store: ContactStore, gateway: SmsGateway):
        self.store = store
        self.gateway = gateway
        self.directory = ContactDirectory(store)
        self.dispatcher = FanOutDispatcher(gateway)
        self.router = RoutingEngine(self.directory, self.dispatcher)

    # ── Inbound messages ──

    async def handle_inbound(self, sender_phone: str, body: str) -> RoutingOutcome:
        logger.info("Received message from %s (%d chars)", mask_phone(sender_phone), len(body))
        return await self.router.route(sender_phone, body)

    # ── Directory management ──

    async def list_contacts(self) -> List[Contact]:
        return await self.directory.list()

    async def get_contact(self, phone: str) -> Contact:
        contact = await self.directory.find_by_phone(phone)
        if contact is None:
            raise NotFoundError("Contact", phone_number=phone)
        return contact

    async def create_contact(self, name: str, phone: str, roles: Iterable[Any]) -> Contact:
        # Validate before the uniqueness check so bad input never reaches the store
        role_set = parse_roles(roles)
        if await self.directory.find_by_phone(phone) is not None:
            raise ConflictError("Contact", phone_number=phone)
        return await self.directory.add(name, phone, role_set)

    async def replace_roles(self, phone: str, roles: Iterable[Any]) -> int:
        return await self.directory.update_roles(phone, roles)

    async def delete_contact(self, phone: str) -> int:
        return await self.directory.remove(phone)

    async def close(self) -> None:
        close = getattr(self.gateway, "close", None)
        if close is not None:
            await close()


def build_relay_service(config: Optional[Settings] = None) -> RelayService:
    """Build a RelayService from settings (store backend + SMS provider)."""
    config = config or settings
    backend = config.STORE_BACKEND.lower()

    if backend == "memory":
        store: ContactStore = InMemoryContactStore()
    elif backend == "postgres":
        from backend.app.core.database import get_session_factory
        from backend.app.directory.sql_store import SqlContactStore

        store = SqlContactStore(get_session_factory())
    else:
        raise ValueError(f"Unknown STORE_BACKEND: {config.STORE_BACKEND}")

    gateway = build_gateway(config)
    logger.info(
        "Relay service ready (store=%s, sms=%s)",
        backend, config.SMS_PROVIDER,
    )
    return RelayService(store, gateway)
