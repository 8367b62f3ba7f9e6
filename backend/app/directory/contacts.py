"""
contacts.py — Domain view over the directory store.

Duplicate-phone policy
──────────────────────
The store does not enforce one record per phone number, so every
operation defines what happens when several records match:

    find_by_phone   first match in store order
    update_roles    every match is updated, in one atomic commit
    remove          every match is deleted, in one atomic commit

Updating all duplicates identically heals a duplicated phone number
rather than leaving the copies to disagree.

Race window
───────────
``update_roles`` and ``remove`` query for matches and then commit a
batch. The query and the commit are not one transaction: a record
inserted or changed in between is not covered by that call.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional

from backend.app.core.errors import NotFoundError
from backend.app.core.logging_config import mask_phone
from backend.app.directory.models import BatchOp, Contact, Role, parse_roles
from backend.app.directory.store import ContactStore

logger = logging.getLogger(__name__)


class ContactDirectory:
    """Contact lifecycle and role-set semantics on top of a ContactStore."""

    def __init__(self, store: ContactStore):
        self.store = store

    async def find_by_phone(self, phone: str) -> Optional[Contact]:
        """Return the first contact for ``phone``, or None."""
        matches = await self.store.query(phone=phone)
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "Phone %s matches %d directory records; using the first",
                mask_phone(phone), len(matches),
            )
        return matches[0]

    async def list_by_role(self, role: Role) -> List[Contact]:
        """Every contact whose role set contains ``role``."""
        return await self.store.query(role=role)

    async def list(self) -> List[Contact]:
        """Full directory snapshot."""
        return await self.store.query()

    async def add(self, name: str, phone: str, roles: Iterable[Any]) -> Contact:
        """
        Insert a new contact unconditionally.

        Phone uniqueness is not checked here; callers that care must call
        ``find_by_phone`` first.

        Raises
        ------
        InvalidRoleError
            Before the store is touched, if any role token is unknown.
        """
        role_set = parse_roles(roles)
        contact = await self.store.insert(
            Contact(name=name, phone_number=phone, roles=role_set)
        )
        logger.info(
            "Added contact %s with roles %s",
            mask_phone(phone), sorted(r.value for r in role_set),
        )
        return contact

    async def update_roles(self, phone: str, roles: Iterable[Any]) -> int:
        """
        Replace the role set of every record matching ``phone``.

        Returns
        -------
        int
            Number of records updated.

        Raises
        ------
        InvalidRoleError
            If any role token is unknown (store untouched).
        NotFoundError
            If no record matches (store untouched), or a matched record was
            deleted before the commit (batch rolled back).
        """
        role_set = parse_roles(roles)
        matches = await self.store.query(phone=phone)
        if not matches:
            raise NotFoundError("Contact", phone_number=phone)

        await self.store.commit([BatchOp.update(c.record_id, role_set) for c in matches])

        if len(matches) > 1:
            logger.warning(
                "Updated %d duplicate records for %s",
                len(matches), mask_phone(phone),
            )
        logger.info(
            "Replaced roles for %s with %s",
            mask_phone(phone), sorted(r.value for r in role_set),
        )
        return len(matches)

    async def remove(self, phone: str) -> int:
        """
        Delete every record matching ``phone``.

        Removing an absent phone number is a no-op.

        Returns
        -------
        int
            Number of records deleted.
        """
        matches = await self.store.query(phone=phone)
        if not matches:
            logger.debug("Remove for %s matched nothing", mask_phone(phone))
            return 0

        await self.store.commit([BatchOp.delete(c.record_id) for c in matches])
        logger.info("Removed %d record(s) for %s", len(matches), mask_phone(phone))
        return len(matches)
