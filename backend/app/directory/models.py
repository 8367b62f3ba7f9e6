"""
models.py — Data structures for the contact directory.

Defines:
    • Role         — permission tags carried by a contact
    • Contact      — a directory record (name + phone + role set)
    • BatchOp      — one write inside an atomic multi-document commit
    • parse_roles  — validate raw role tokens from a mutation request

═══════════════════════════════════════════════════════════════════════════
ROLE MATRIX
═══════════════════════════════════════════════════════════════════════════

    Role          Receives broadcasts   May broadcast   Receives escalations
    ──────────    ──────────────────    ─────────────   ────────────────────
    SUBSCRIBER    yes                   no              no
    STAFF         no                    yes             no
    ADMIN         no                    yes             yes

``SUPERVISOR`` is an older name for ``ADMIN``. It is accepted anywhere a
role token is parsed (requests and stored records) and always normalises
to ``Role.ADMIN``.

A phone number is *meant* to identify one contact, but nothing below the
API layer enforces it. Several records may share a phone number; every
record carries a store-assigned ``record_id`` so that batch writes can
address each duplicate individually.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional

from backend.app.core.errors import InvalidRoleError


class Role(str, Enum):
    """Permission tags. Values are the tokens persisted in the store."""
    SUBSCRIBER = "SUBSCRIBER"
    STAFF      = "STAFF"
    ADMIN      = "ADMIN"

    @classmethod
    def _missing_(cls, value: object) -> Optional["Role"]:
        if not isinstance(value, str):
            return None
        token = value.strip().upper()
        if token in ROLE_ALIASES:
            return cls(ROLE_ALIASES[token])
        if token in cls.__members__:
            return cls.__members__[token]
        return None

    @property
    def tokens(self) -> FrozenSet[str]:
        """Every stored token that means this role."""
        return frozenset(
            [self.value] + [alias for alias, target in ROLE_ALIASES.items()
                            if target == self.value]
        )


# Legacy token → canonical role value
ROLE_ALIASES: Dict[str, str] = {
    "SUPERVISOR": "ADMIN",
}

# Roles allowed to originate a broadcast
ORIGINATOR_ROLES: FrozenSet[Role] = frozenset({Role.STAFF, Role.ADMIN})


def parse_roles(tokens: Iterable[Any]) -> FrozenSet[Role]:
    """
    Convert raw role tokens into a role set.

    Raises
    ------
    InvalidRoleError
        On the first token that is not a known role or alias.
    """
    roles = set()
    for token in tokens:
        if isinstance(token, Role):
            roles.add(token)
            continue
        try:
            roles.add(Role(token))
        except ValueError:
            raise InvalidRoleError(
                token, valid=[r.value for r in Role] + sorted(ROLE_ALIASES),
            ) from None
    return frozenset(roles)


@dataclass(frozen=True)
class Contact:
    """
    A directory record.

    Attributes
    ----------
    name : str
        Display name, used as the signature on broadcasts.
    phone_number : str
        E.164-style phone number. Not unique in the store.
    roles : frozenset of Role
        Unordered role set; may be empty.
    record_id : str | None
        Store-assigned document id. None until inserted.
    """
    name: str
    phone_number: str
    roles: FrozenSet[Role] = field(default_factory=frozenset)
    record_id: Optional[str] = field(default=None, compare=False)

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    @property
    def is_originator(self) -> bool:
        """True if this contact may originate broadcasts."""
        return bool(self.roles & ORIGINATOR_ROLES)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "phone_number": self.phone_number,
            "roles": sorted(r.value for r in self.roles),
        }


@dataclass(frozen=True)
class BatchOp:
    """One write inside an atomic commit: replace roles, or delete."""
    kind: str  # "update" | "delete"
    record_id: str
    roles: Optional[FrozenSet[Role]] = None

    @classmethod
    def update(cls, record_id: str, roles: FrozenSet[Role]) -> "BatchOp":
        return cls(kind="update", record_id=record_id, roles=roles)

    @classmethod
    def delete(cls, record_id: str) -> "BatchOp":
        return cls(kind="delete", record_id=record_id)
