"""
FastAPI route: Inbound SMS webhook.

    POST /sms/inbound   — Twilio-style form post (From, Body)

The gateway expects a TwiML document back. An empty ``<Response/>``
tells it no reply is attached; confirmations go out as separate sends.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form
from fastapi.responses import Response

from backend.app.alerts.relay_service import RelayService
from backend.app.api.deps import get_relay_service
from backend.app.core.errors import MissingParametersError
from backend.app.core.logging_config import bind_log_context, mask_phone

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sms", tags=["sms"])

EMPTY_TWIML = "<Response></Response>"


@router.post(
    "/inbound",
    summary="Receive an inbound SMS",
    description=(
        "Classifies the sender by role and either escalates the message to "
        "admins or broadcasts it to subscribers."
    ),
    response_class=Response,
)
async def inbound_sms(
    from_number: Optional[str] = Form(None, alias="From"),
    body: Optional[str] = Form(None, alias="Body"),
    relay: RelayService = Depends(get_relay_service),
):
    missing = [name for name, value in (("From", from_number), ("Body", body)) if not value]
    if missing:
        raise MissingParametersError(missing)

    bind_log_context(sender=mask_phone(from_number))

    await relay.handle_inbound(from_number, body)
    return Response(content=EMPTY_TWIML, media_type="text/xml")
