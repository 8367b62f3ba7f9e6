"""
store.py — Directory store port and the in-process implementation.

The store is a thin boundary over a document collection. It offers only
the primitives the directory needs:

    query(phone=?, role=?)  → records matching every given filter
    insert(contact)         → the stored record (with record_id)
    commit(ops)             → apply a batch of update/delete ops atomically
    ping()                  → raise if the backend is unreachable

Ordering: ``query`` returns records in insertion order. That is the
"store-defined order" the directory relies on when a phone lookup hits
more than one record.

No retries, caching or uniqueness checks live here.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Dict, List, Optional, Protocol, Sequence

from backend.app.core.errors import NotFoundError
from backend.app.directory.models import BatchOp, Contact, Role

logger = logging.getLogger(__name__)


class ContactStore(Protocol):
    """Persists contact records. Implemented by infrastructure adapters."""

    async def query(
        self,
        *,
        phone: Optional[str] = None,
        role: Optional[Role] = None,
    ) -> List[Contact]:
        """Return records matching all given filters, in store order."""
        ...

    async def insert(self, contact: Contact) -> Contact:
        """Store a new record unconditionally and return it with its id."""
        ...

    async def commit(self, ops: Sequence[BatchOp]) -> None:
        """Apply every op or none of them.

        Raises NotFoundError if an updated record no longer exists.
        """
        ...

    async def ping(self) -> None:
        """Raise StoreUnavailableError if the backend cannot be reached."""
        ...


def _new_record_id() -> str:
    return uuid.uuid4().hex


class InMemoryContactStore:
    """
    Process-local store: an arena of records plus a phone-number index.

    The index maps a phone number to a *list* of record ids, so duplicate
    phone numbers are representable exactly as they would be in the
    document store.
    """

    def __init__(self) -> None:
        self._records: Dict[str, Contact] = {}
        self._by_phone: Dict[str, List[str]] = {}

    def __len__(self) -> int:
        return len(self._records)

    async def query(
        self,
        *,
        phone: Optional[str] = None,
        role: Optional[Role] = None,
    ) -> List[Contact]:
        if phone is not None:
            candidates = [self._records[rid] for rid in self._by_phone.get(phone, [])]
        else:
            candidates = list(self._records.values())

        if role is not None:
            candidates = [c for c in candidates if role in c.roles]
        return candidates

    async def insert(self, contact: Contact) -> Contact:
        record = replace(contact, record_id=_new_record_id())
        self._records[record.record_id] = record
        self._by_phone.setdefault(record.phone_number, []).append(record.record_id)
        logger.debug("Inserted record %s", record.record_id)
        return record

    async def commit(self, ops: Sequence[BatchOp]) -> None:
        # Validate the whole batch before touching anything
        for op in ops:
            if op.kind not in ("update", "delete"):
                raise ValueError(f"Unknown batch op kind: {op.kind!r}")
            if op.kind == "update" and op.record_id not in self._records:
                # Removed since the caller read it
                raise NotFoundError("Contact", record_id=op.record_id)

        for op in ops:
            if op.kind == "update":
                current = self._records[op.record_id]
                self._records[op.record_id] = replace(current, roles=frozenset(op.roles or ()))
            else:
                self._drop(op.record_id)

        logger.debug("Committed batch of %d op(s)", len(ops))

    async def ping(self) -> None:
        return None

    def _drop(self, record_id: str) -> None:
        record = self._records.pop(record_id, None)
        if record is None:
            return
        ids = self._by_phone.get(record.phone_number, [])
        if record_id in ids:
            ids.remove(record_id)
        if not ids:
            self._by_phone.pop(record.phone_number, None)
