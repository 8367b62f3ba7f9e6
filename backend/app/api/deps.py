"""FastAPI dependencies shared by the route modules."""

from __future__ import annotations

from fastapi import Request

from backend.app.alerts.relay_service import RelayService


def get_relay_service(request: Request) -> RelayService:
    """The RelayService built at startup and stored on ``app.state``."""
    return request.app.state.relay
