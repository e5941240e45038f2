"""Pydantic request and response models."""

from src.server.models.common import ErrorResponse, HealthResponse, InfoResponse
from src.server.models.mtd import (
    ApiLogListResponse,
    ApiLogResponse,
    CalculationTriggerRequest,
    ClearLogsResponse,
    ConnectionStatusResponse,
    ErrorSummaryResponse,
    PeriodSubmissionRequest,
)

__all__ = [
    # Common models
    "HealthResponse",
    "InfoResponse",
    "ErrorResponse",
    # MTD models
    "ConnectionStatusResponse",
    "PeriodSubmissionRequest",
    "CalculationTriggerRequest",
    "ApiLogResponse",
    "ApiLogListResponse",
    "ErrorSummaryResponse",
    "ClearLogsResponse",
]
