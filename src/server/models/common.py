"""Common Pydantic models for API requests and responses.

This module contains shared response models used across the API.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class HealthResponse(BaseModel):
    """Health check response model.

    Attributes:
        status: Service health status
        timestamp: Current server timestamp
        environment: HMRC environment in use
    """

    status: str = Field(default="healthy", description="Service health status")
    timestamp: datetime = Field(default_factory=_now, description="Current server timestamp")
    environment: Optional[str] = Field(default=None, description="HMRC environment (sandbox or production)")


class InfoResponse(BaseModel):
    """System information response model."""

    app_name: str = Field(..., description="Application name")
    version: str = Field(..., description="Application version")
    status: str = Field(default="running", description="Service status")
    database_connected: bool = Field(..., description="Database connection status")
    hmrc_configured: bool = Field(..., description="Whether HMRC credentials are loaded")
    timestamp: datetime = Field(default_factory=_now, description="Current server timestamp")


class ErrorResponse(BaseModel):
    """Standard error response model.

    Attributes:
        error: User-safe error message
        code: Stable error code callers can branch on
        details: Per-field messages, when HMRC reported any
    """

    error: str = Field(..., description="User-safe error message")
    code: str = Field(..., description="Error code")
    details: Optional[List[str]] = Field(default=None, description="Per-field error messages")
