"""
HMRC Making Tax Digital API client.

Public API:
    MtdApiService: Business operations (businesses, obligations, periods, calculations)
    CallContext: Caller identity and inbound request evidence
    FraudHeaderBuilder: Gov-Client/Gov-Vendor fraud prevention headers
    ApiLogger: Audit log of every API call
    parse_hmrc_error: Error payload translation

Exceptions:
    HmrcApiError: Base exception (with ErrorKind subclasses)
    IncompleteFraudHeadersError: Mandatory fraud header missing
"""

from .api_logger import ApiLogEntry, ApiLogFilter, ApiLogger, ErrorSummary, InMemoryLogStore, LogStore
from .errors import ParsedError, parse_hmrc_error
from .exceptions import (
    ErrorKind,
    HmrcApiError,
    IncompleteFraudHeadersError,
    RateLimitedError,
    ResourceNotFoundError,
    UnauthorizedError,
    UnknownHmrcError,
    UpstreamUnavailableError,
    ValidationError,
)
from .fraud_headers import FraudHeaderBuilder
from .models import Business, Calculation, CalculationTrigger, Obligation, PeriodSubmission, SubmissionResult
from .service import CallContext, MtdApiService

__all__ = [
    "ApiLogEntry",
    "ApiLogFilter",
    "ApiLogger",
    "Business",
    "Calculation",
    "CalculationTrigger",
    "CallContext",
    "ErrorKind",
    "ErrorSummary",
    "FraudHeaderBuilder",
    "HmrcApiError",
    "InMemoryLogStore",
    "IncompleteFraudHeadersError",
    "LogStore",
    "MtdApiService",
    "Obligation",
    "ParsedError",
    "PeriodSubmission",
    "RateLimitedError",
    "ResourceNotFoundError",
    "SubmissionResult",
    "UnauthorizedError",
    "UnknownHmrcError",
    "UpstreamUnavailableError",
    "ValidationError",
    "parse_hmrc_error",
]
