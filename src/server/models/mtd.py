"""Pydantic models for the MTD API requests and responses."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from src.hmrc.models import PeriodSubmission


class ConnectionStatusResponse(BaseModel):
    """Response schema for the HMRC connection status."""

    is_connected: bool = Field(..., alias="isConnected")
    status: str
    connected_at: Optional[datetime] = Field(None, alias="connectedAt")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    needs_reauth: bool = Field(False, alias="needsReauth")

    model_config = {"populate_by_name": True}


class PeriodSubmissionRequest(PeriodSubmission):
    """Request schema for a quarterly update."""

    nino: str = Field(..., description="National Insurance number")

    @field_validator("nino")
    @classmethod
    def normalize_nino(cls, v: str) -> str:
        return v.replace(" ", "").upper()

    def to_submission(self) -> PeriodSubmission:
        return PeriodSubmission.model_validate(self.model_dump(exclude={"nino"}))


class CalculationTriggerRequest(BaseModel):
    final_declaration: bool = Field(False, alias="finalDeclaration")

    model_config = {"populate_by_name": True}


class ApiLogResponse(BaseModel):
    """Response schema for one API log entry."""

    id: Optional[int] = None
    user_id: str
    timestamp: datetime
    method: str
    endpoint: str
    request_body: Any = None
    response_status: int
    response_body: Any = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    duration_ms: int
    correlation_id: Optional[str] = None
    gov_test_scenario: Optional[str] = None

    model_config = {"from_attributes": True}


class ApiLogListResponse(BaseModel):
    logs: List[ApiLogResponse]
    count: int


class ErrorSummaryResponse(BaseModel):
    total_errors: int = Field(..., alias="totalErrors")
    errors_by_code: Dict[str, int] = Field(default_factory=dict, alias="errorsByCode")
    recent_errors: List[ApiLogResponse] = Field(default_factory=list, alias="recentErrors")

    model_config = {"populate_by_name": True}


class ClearLogsResponse(BaseModel):
    deleted: int
    days_to_keep: int = Field(..., alias="daysToKeep")

    model_config = {"populate_by_name": True}
