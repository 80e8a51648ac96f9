"""
Email API response models.
Used by routes for output formatting and error bodies.
"""

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error body returned for rejected requests."""

    reason: str = Field(..., description="Human-readable reason for the failure")
    upstream_status: int | None = Field(
        default=None, description="Status code returned by the failing collaborator, if any"
    )
