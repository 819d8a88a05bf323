"""
API response models for foliogate's JSON surface.

The web pages render HTML; these Pydantic v2 models cover the health check
and the structured error envelope returned by the JSON exception handlers.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    code: str = Field(description="Machine-readable error code, e.g. 'rate_limited'.")
    message: str = Field(description="Human-readable summary.")
    detail: Optional[str] = Field(default=None, description="Optional extra context.")


class ErrorResponse(BaseModel):
    """Envelope shared by every JSON error response."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
