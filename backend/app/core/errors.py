"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON failure envelope: {success: false, message, error, details?}
    • Automatic logging of unhandled errors
    • Sanitised messages for unexpected errors in production

Usage:
    from backend.app.core.errors import (
        EmergencyAPIError,
        NotFoundError,
        InvalidTransition,
        register_error_handlers,
    )

    raise NotFoundError("Alert", id="7f3c...")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class EmergencyAPIError(Exception):
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


class ValidationError(EmergencyAPIError):
    """Malformed or missing input (400)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class InvalidLocation(ValidationError):
    """Latitude/longitude missing or not usable (400)."""

    def __init__(self, message: str = "Location is required for emergency alert", **details: Any):
        super().__init__(message, **details)
        self.error_code = "INVALID_LOCATION"


class AuthError(EmergencyAPIError):
    """Missing, invalid or expired token (401)."""

    def __init__(self, message: str = "Not authorized to access this route. Please login."):
        super().__init__(
            message=message,
            status_code=401,
            error_code="AUTH_ERROR",
        )


class AccountInactiveError(EmergencyAPIError):
    """Authenticated user whose account is deactivated (403)."""

    def __init__(self, message: str = "Account is deactivated"):
        super().__init__(
            message=message,
            status_code=403,
            error_code="ACCOUNT_INACTIVE",
        )


class NotFoundError(EmergencyAPIError):
    """Resource absent or not owned by the caller (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class DuplicateContact(EmergencyAPIError):
    """Phone number already registered for this user (400)."""

    def __init__(self, phone: str):
        super().__init__(
            message="Contact with this phone number already exists",
            status_code=400,
            error_code="DUPLICATE_CONTACT",
            details={"phone": phone},
        )


class PrimaryContactConflict(EmergencyAPIError):
    """A concurrent write already claimed the primary slot (409)."""

    def __init__(self, user_id: int):
        super().__init__(
            message="Another contact was set as primary at the same time. Please retry.",
            status_code=409,
            error_code="PRIMARY_CONTACT_CONFLICT",
            details={"user_id": user_id},
        )


class InvalidTransition(EmergencyAPIError):
    """Alert state machine violation (400)."""

    def __init__(self, alert_id: str, current: str, target: str):
        super().__init__(
            message="Alert is not active",
            status_code=400,
            error_code="INVALID_TRANSITION",
            details={"alert_id": alert_id, "current_status": current, "target_status": target},
        )


class NoContactsConfigured(EmergencyAPIError):
    """Panic activation refused: no active contacts (400)."""

    def __init__(self, user_id: int):
        super().__init__(
            message="No emergency contacts found. Please add emergency contacts first.",
            status_code=400,
            error_code="NO_CONTACTS_CONFIGURED",
            details={"user_id": user_id},
        )


class RateLimitError(EmergencyAPIError):
    """Rate limit exceeded (429)."""

    def __init__(
        self,
        message: str = "Emergency alert rate limit reached. Please wait before sending another alert.",
        retry_after: int = 60,
    ):
        super().__init__(
            message=message,
            status_code=429,
            error_code="RATE_LIMIT_EXCEEDED",
            details={"retry_after_seconds": retry_after},
        )


class ChannelDeliveryFailure(EmergencyAPIError):
    """A provider rejected one channel attempt. Captured, never surfaced."""

    def __init__(self, channel: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Delivery via {channel} failed: {message}",
            status_code=502,
            error_code="CHANNEL_DELIVERY_FAILURE",
            details={"channel": channel, **details},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Any] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build the failure envelope."""
    body: Dict[str, Any] = {
        "success": False,
        "message": message,
        "error": error_code,
    }

    if details:
        body["details"] = details

    # Include request path in non-production
    if request and not settings.is_production:
        body["path"] = str(request.url.path)
        body["method"] = request.method

    headers = None
    request_id = getattr(request.state, "request_id", None) if request else None
    if request_id:
        headers = {"X-Request-ID": request_id}

    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _format_validation_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    return [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(EmergencyAPIError)
    async def handle_api_error(request: Request, exc: EmergencyAPIError):
        log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(
            log_level,
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = _format_validation_errors(exc)
        logger.warning("Request validation failed: %s", errors)
        return _build_error_response(
            400, "VALIDATION_ERROR", "Validation failed", errors, request,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        return _build_error_response(
            exc.status_code, "HTTP_ERROR", str(exc.detail), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = "Internal server error" if settings.is_production else str(exc)
        return _build_error_response(
            500, "UNEXPECTED_ERROR", message, request=request,
        )
