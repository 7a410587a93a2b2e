"""Read-only status endpoints for a running pilot.

- GET /health — liveness plus the current failover state
- GET /status — state, active node, last probe and last recovery report
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, FastAPI, Response

from smart_pilot.middleware.error_handler import register_error_handlers
from smart_pilot.models.responses import ApiResponse

if TYPE_CHECKING:
    from smart_pilot.pilot.controller import FailoverController


def create_status_router(*, controller: Any) -> APIRouter:
    """Factory that creates the status router bound to one controller."""

    status_router = APIRouter(tags=["status"])

    @status_router.get("/health")
    async def health(response: Response) -> dict:
        """200 while the loop is running, 503 once shutdown was requested."""
        status = controller.get_status()
        alive = not status["stopping"]
        if not alive:
            response.status_code = 503

        return ApiResponse(
            success=alive,
            data={"status": "running" if alive else "stopping", "state": status["state"]},
            error=None if alive else "Pilot is shutting down",
        ).model_dump()

    @status_router.get("/status")
    async def status() -> dict:
        return ApiResponse(success=True, data=controller.get_status()).model_dump()

    return status_router


def create_status_app(controller: FailoverController) -> FastAPI:
    """Build the status FastAPI application."""
    app = FastAPI(title="Smart Pilot Status", version="1.0.0")
    register_error_handlers(app)
    app.include_router(create_status_router(controller=controller))
    return app
