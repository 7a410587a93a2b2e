"""Pilot error hierarchy and FastAPI exception handlers for the status API.

All pilot-specific errors extend PilotError. The failover controller catches
them at the boundary of the cycle that raised them; the status API renders
them (plus unhandled exceptions) as a consistent JSON envelope:
{ success, data, error, meta }.
"""

from __future__ import annotations

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------


class PilotError(Exception):
    """Base error for all pilot-specific errors."""

    status_code: int = 500
    message: str = "Internal pilot error"

    def __init__(self, message: str | None = None, **kwargs: object) -> None:
        self.message = message or self.__class__.message
        self.details = kwargs
        super().__init__(self.message)


class TransientNetworkError(PilotError):
    """Control API or probe endpoint unreachable or timed out."""

    status_code = 503
    message = "Control API unreachable"


class ControlAPIError(PilotError):
    """Control API answered with a non-success status."""

    status_code = 502
    message = "Control API request failed"


class ConfigurationError(PilotError):
    """Expected proxy group or engine configuration is missing."""

    status_code = 500
    message = "Proxy configuration error"


class NetworkPermissionError(PilotError, PermissionError):
    """OS-level proxy toggle was denied."""

    status_code = 403
    message = "Permission denied while changing system proxy"


class SubscriptionError(PilotError):
    """Base error for subscription store operations."""

    status_code = 502
    message = "Subscription operation failed"


class FetchError(SubscriptionError):
    """Subscription source could not be downloaded."""

    message = "Failed to fetch subscription"


class FormatError(SubscriptionError):
    """Subscription content could not be normalized into an engine profile."""

    status_code = 422
    message = "Subscription content has an unsupported format"


class SubscriptionNotFoundError(SubscriptionError):
    """No subscription with the requested name."""

    status_code = 404
    message = "Subscription not found"


class SubscriptionExistsError(SubscriptionError):
    """A subscription with the requested name already exists."""

    status_code = 409
    message = "Subscription already exists"


class AlreadyRunningError(PilotError):
    """Another live pilot instance owns the instance lock."""

    status_code = 409
    message = "Another pilot instance is already running"


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------


def _envelope(
    status_code: int,
    error: str,
    meta: dict | None = None,
) -> JSONResponse:
    """Build a JSON envelope error response."""
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "data": None,
            "error": error,
            "meta": meta,
        },
    )


async def _pilot_error_handler(_request: Request, exc: PilotError) -> JSONResponse:
    """Handle PilotError subclasses."""
    meta = exc.details if exc.details else None
    return _envelope(exc.status_code, exc.message, meta=meta)


async def _unhandled_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions — log traceback, return generic 500."""
    logger.error(
        "Unhandled exception: %s\n%s",
        exc,
        traceback.format_exc(),
    )
    return _envelope(status_code=500, error="Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Wire up all exception handlers on the FastAPI application."""
    app.add_exception_handler(PilotError, _pilot_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)  # type: ignore[arg-type]
