"""
Email API request models.
Used by routes for input validation.
"""

from pydantic import BaseModel, Field


class SearchEmailsRequest(BaseModel):
    """Request for searching indexed messages."""

    text: str | None = Field(default=None, description="Free-text query passed to the search backend")
