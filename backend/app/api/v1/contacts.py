"""
FastAPI route: Contact directory management.

Provides endpoints to:
    GET    /api/v1/contacts           — list every contact
    GET    /api/v1/contacts/{phone}   — fetch one contact
    POST   /api/v1/contacts           — add a contact (409 if phone exists)
    PUT    /api/v1/contacts/{phone}   — replace a contact's role set
    DELETE /api/v1/contacts/{phone}   — remove a contact (idempotent)

Errors (404 / 409 / 422 INVALID_ROLE / 503) are raised as domain
exceptions and rendered by the handlers in ``core.errors``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.app.alerts.relay_service import RelayService
from backend.app.api.deps import get_relay_service
from backend.app.api.schemas import (
    ContactCreatedResponse,
    ContactCreateRequest,
    ContactListResponse,
    ContactOut,
    ContactResponse,
    MutationResponse,
    RolesUpdateRequest,
)

router = APIRouter(prefix="/api/v1/contacts", tags=["contacts"])


@router.get(
    "",
    response_model=ContactListResponse,
    summary="List contacts",
)
async def list_contacts(relay: RelayService = Depends(get_relay_service)):
    contacts = await relay.list_contacts()
    return ContactListResponse(contacts=[ContactOut.from_contact(c) for c in contacts])


@router.get(
    "/{phone}",
    response_model=ContactResponse,
    summary="Get a contact by phone number",
)
async def get_contact(phone: str, relay: RelayService = Depends(get_relay_service)):
    contact = await relay.get_contact(phone)
    return ContactResponse(contact=ContactOut.from_contact(contact))


@router.post(
    "",
    response_model=ContactCreatedResponse,
    status_code=201,
    summary="Add a contact",
    description="Rejects the request with 409 if the phone number is already listed.",
)
async def create_contact(
    request: ContactCreateRequest,
    relay: RelayService = Depends(get_relay_service),
):
    contact = await relay.create_contact(request.name, request.phone_number, request.roles)
    return ContactCreatedResponse(contact=ContactOut.from_contact(contact))


@router.put(
    "/{phone}",
    response_model=MutationResponse,
    summary="Replace a contact's roles",
    description="Every record with this phone number receives the new role set.",
)
async def replace_roles(
    phone: str,
    request: RolesUpdateRequest,
    relay: RelayService = Depends(get_relay_service),
):
    updated = await relay.replace_roles(phone, request.roles)
    return MutationResponse(message="Contact updated successfully", affected=updated)


@router.delete(
    "/{phone}",
    response_model=MutationResponse,
    summary="Remove a contact",
    description="Deleting a phone number that is not listed succeeds with affected=0.",
)
async def delete_contact(phone: str, relay: RelayService = Depends(get_relay_service)):
    deleted = await relay.delete_contact(phone)
    return MutationResponse(message="Contact removed successfully", affected=deleted)
