"""Public models for the status API."""

from smart_pilot.models.responses import ApiResponse

__all__ = ["ApiResponse"]
