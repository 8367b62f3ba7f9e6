"""
sql_store.py — PostgreSQL implementation of the directory store.

Schema:

    contacts                      contact_roles
    ──────────────────────        ──────────────────────────
    seq           int PK (auto)   contact_id  FK → contacts.id
    id            varchar unique  role        varchar
    name          varchar         PK (contact_id, role)
    phone_number  varchar (idx,
                  NOT unique)
    created_at    timestamptz

``query`` returns rows ordered by ``seq``, i.e. insertion order.

``phone_number`` is indexed but not unique: duplicates are tolerated the
same way the in-memory store tolerates them. Role filtering joins on
``contact_roles`` and matches every stored token for the role, so legacy
``SUPERVISOR`` rows are found by an ``ADMIN`` query.

Every call opens its own session. ``commit`` runs all ops inside one
transaction; any SQLAlchemy failure surfaces as StoreUnavailableError.
An update whose record was deleted after the caller read it aborts the
batch with NotFoundError.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import DateTime, ForeignKey, Integer, String, delete, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column, relationship, selectinload

from backend.app.core.database import Base
from backend.app.core.errors import NotFoundError, StoreUnavailableError
from backend.app.directory.models import BatchOp, Contact, Role

logger = logging.getLogger(__name__)


class ContactRow(Base):
    __tablename__ = "contacts"

    # Insertion sequence; defines store order for duplicate phone numbers
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(32), unique=True)
    name: Mapped[str] = mapped_column(String(200))
    phone_number: Mapped[str] = mapped_column(String(32), index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(),
    )

    roles: Mapped[List["ContactRoleRow"]] = relationship(
        back_populates="contact",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class ContactRoleRow(Base):
    __tablename__ = "contact_roles"

    contact_id: Mapped[str] = mapped_column(
        ForeignKey("contacts.id", ondelete="CASCADE"), primary_key=True,
    )
    role: Mapped[str] = mapped_column(String(32), primary_key=True)

    contact: Mapped[ContactRow] = relationship(back_populates="roles")


def _to_contact(row: ContactRow) -> Contact:
    roles = set()
    for r in row.roles:
        try:
            roles.add(Role(r.role))
        except ValueError:
            logger.warning("Ignoring unknown role token %r on record %s", r.role, row.id)
    return Contact(
        name=row.name,
        phone_number=row.phone_number,
        roles=frozenset(roles),
        record_id=row.id,
    )


class SqlContactStore:
    """Contact store backed by an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def query(
        self,
        *,
        phone: Optional[str] = None,
        role: Optional[Role] = None,
    ) -> List[Contact]:
        stmt = select(ContactRow).options(selectinload(ContactRow.roles))
        if phone is not None:
            stmt = stmt.where(ContactRow.phone_number == phone)
        if role is not None:
            stmt = stmt.where(
                ContactRow.roles.any(ContactRoleRow.role.in_(sorted(role.tokens)))
            )
        stmt = stmt.order_by(ContactRow.seq)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.scalars().unique().all()
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("query", str(exc)) from exc

        return [_to_contact(row) for row in rows]

    async def insert(self, contact: Contact) -> Contact:
        record_id = uuid.uuid4().hex
        row = ContactRow(
            id=record_id,
            name=contact.name,
            phone_number=contact.phone_number,
            roles=[ContactRoleRow(role=r.value) for r in contact.roles],
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(row)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("insert", str(exc)) from exc

        return Contact(
            name=contact.name,
            phone_number=contact.phone_number,
            roles=contact.roles,
            record_id=record_id,
        )

    async def commit(self, ops: Sequence[BatchOp]) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    for op in ops:
                        await self._apply(session, op)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("commit", str(exc)) from exc

    async def ping(self) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("ping", str(exc)) from exc

    async def _apply(self, session: AsyncSession, op: BatchOp) -> None:
        if op.kind == "delete":
            await session.execute(
                delete(ContactRoleRow).where(ContactRoleRow.contact_id == op.record_id)
            )
            await session.execute(delete(ContactRow).where(ContactRow.id == op.record_id))
            return

        if op.kind != "update":
            raise ValueError(f"Unknown batch op kind: {op.kind!r}")

        exists = await session.scalar(
            select(ContactRow.id).where(ContactRow.id == op.record_id)
        )
        if exists is None:
            # Removed since the caller read it; aborts the whole transaction
            raise NotFoundError("Contact", record_id=op.record_id)
        await session.execute(
            delete(ContactRoleRow).where(ContactRoleRow.contact_id == op.record_id)
        )
        session.add_all([
            ContactRoleRow(contact_id=op.record_id, role=r.value) for r in (op.roles or ())
        ])
        await session.flush()
