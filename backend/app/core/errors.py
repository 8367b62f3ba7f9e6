"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON error response format
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Usage:
    from backend.app.core.errors import (
        AlertRelayError,
        NotFoundError,
        ConflictError,
        InvalidRoleError,
        GatewaySendFailure,
        StoreUnavailableError,
        register_error_handlers,
    )

    raise NotFoundError("Contact", phone_number="+15550100")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class AlertRelayError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(AlertRelayError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ConflictError(AlertRelayError):
    """Resource already exists (409)."""

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(
            message=f"{resource} already exists",
            status_code=409,
            error_code="CONFLICT",
            details={"resource": resource, **identifiers},
        )


class ValidationError(AlertRelayError):
    """Input validation failed (422 unless overridden)."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        error_code: str = "VALIDATION_ERROR",
        status_code: int = 422,
        **details: Any,
    ):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=error_code,
            details=d,
        )


class MissingParametersError(ValidationError):
    """Required webhook form fields absent or empty (400)."""

    def __init__(self, missing: List[str]):
        super().__init__(
            "Missing required parameters",
            error_code="MISSING_PARAMETERS",
            status_code=400,
            missing=missing,
        )


class InvalidRoleError(ValidationError):
    """Unrecognised role token in a mutation request (422)."""

    def __init__(self, role: Any, valid: List[str]):
        super().__init__(
            f"Invalid role: {role}",
            field="roles",
            error_code="INVALID_ROLE",
            role=str(role),
            valid_roles=valid,
        )
        self.role = role


class GatewaySendFailure(AlertRelayError):
    """One or more SMS sends in a fan-out failed (502).

    ``results`` holds every per-recipient outcome, including the sends
    that succeeded and were not undone.
    """

    def __init__(self, results: List[Any], message: str = ""):
        failed = [r for r in results if not r.ok]
        super().__init__(
            message=message or f"{len(failed)} of {len(results)} SMS sends failed",
            status_code=502,
            error_code="GATEWAY_SEND_FAILURE",
            details={
                "attempted": len(results),
                "failed": [
                    {"to": r.to, "error": r.error_message} for r in failed
                ],
            },
        )
        self.results = results


class StoreUnavailableError(AlertRelayError):
    """Contact store transport failure (503)."""

    def __init__(self, operation: str, message: str = ""):
        super().__init__(
            message=f"Contact store unavailable during '{operation}': {message}",
            status_code=503,
            error_code="STORE_UNAVAILABLE",
            details={"operation": operation},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    # Include request path in non-production
    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(AlertRelayError)
    async def handle_relay_error(request: Request, exc: AlertRelayError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        problems = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())[1:]),
                "message": err.get("msg", ""),
                "type": err.get("type", ""),
            }
            for err in exc.errors()
        ]
        logger.warning("Request validation failed: %s", problems)
        return _build_error_response(
            422, "VALIDATION_ERROR", "Request validation failed",
            {"errors": problems}, request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if settings.DEBUG else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
        )
