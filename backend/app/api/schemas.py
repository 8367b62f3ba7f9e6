"""
Pydantic schemas for the contact-management API.

Separated from the route handlers so they are reusable across
the codebase (webhook handlers, scripts, tests).

Role tokens are accepted as plain strings here and validated by the
directory, so an unknown role surfaces as the INVALID_ROLE error rather
than a generic schema error.
"""

from __future__ import annotations

from typing import List

from pydantic import AliasChoices, BaseModel, Field

from backend.app.directory.models import Contact


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class ContactCreateRequest(BaseModel):
    """Request body for POST /api/v1/contacts."""
    name: str = Field(
        ..., min_length=1,
        description="Display name, used to sign broadcasts",
        examples=["Carol"],
    )
    phone_number: str = Field(
        ..., min_length=1,
        validation_alias=AliasChoices("phone_number", "phoneNumber"),
        description="E.164 phone number",
        examples=["+15550100"],
    )
    roles: List[str] = Field(
        ...,
        description="SUBSCRIBER / STAFF / ADMIN (SUPERVISOR is read as ADMIN)",
        examples=[["STAFF"]],
    )


class RolesUpdateRequest(BaseModel):
    """Request body for PUT /api/v1/contacts/{phone}. Replaces the whole set."""
    roles: List[str] = Field(..., examples=[["SUBSCRIBER", "STAFF"]])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class ContactOut(BaseModel):
    name: str
    phone_number: str
    roles: List[str]

    @classmethod
    def from_contact(cls, contact: Contact) -> "ContactOut":
        return cls(**contact.to_dict())


class ContactListResponse(BaseModel):
    contacts: List[ContactOut]


class ContactResponse(BaseModel):
    contact: ContactOut


class ContactCreatedResponse(BaseModel):
    message: str = "Contact added successfully"
    contact: ContactOut


class MutationResponse(BaseModel):
    message: str
    affected: int = Field(..., description="Number of directory records touched")
