"""HMRC API call log database model.

Append-only audit trail of outbound HMRC API calls. Bodies are stored
as sanitized JSON.
"""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from src.server.database.session import Base


class HmrcApiLog(Base):
    """Audit record of one HMRC API call.

    Attributes:
        id: Unique identifier (auto-incrementing integer)
        user_id: Application user the call was made for
        timestamp: When the call settled (naive UTC)
        method: HTTP method
        endpoint: Request path (NINO masked)
        request_body: Sanitized request body
        response_status: HTTP status, 0 when no response was received
        response_body: Sanitized response body
        error_code: HMRC or local error code
        error_message: User-safe error message
        duration_ms: Call duration in milliseconds
        correlation_id: HMRC X-CorrelationId
        gov_test_scenario: Sandbox test scenario, if any
    """

    __tablename__ = "hmrc_api_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False, index=True, default=datetime.utcnow)
    method = Column(String, nullable=False)
    endpoint = Column(String, nullable=False)
    request_body = Column(JSON, nullable=True)
    response_status = Column(Integer, nullable=False)
    response_body = Column(JSON, nullable=True)
    error_code = Column(String, nullable=True, index=True)
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=False, default=0)
    correlation_id = Column(String, nullable=True)
    gov_test_scenario = Column(String, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<HmrcApiLog(id={self.id}, {self.method} {self.endpoint}, "
            f"status={self.response_status})>"
        )
