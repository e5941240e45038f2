"""Exceptions for the HMRC Making Tax Digital API client."""

from enum import Enum
from typing import Any, List, Optional


class ErrorKind(str, Enum):
    """Closed set of error categories callers branch on."""

    UNAUTHORIZED = "Unauthorized"
    RESOURCE_NOT_FOUND = "ResourceNotFound"
    VALIDATION = "Validation"
    RATE_LIMITED = "RateLimited"
    UPSTREAM_UNAVAILABLE = "UpstreamUnavailable"
    UNKNOWN = "Unknown"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.RATE_LIMITED, ErrorKind.UPSTREAM_UNAVAILABLE)


class HmrcApiError(Exception):
    """
    Base exception for HMRC API errors.

    ``message`` is always safe to show to a user. ``details`` holds the raw
    upstream payload for logs and diagnostics only and must never be echoed
    back in a response body.
    """

    kind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        status_code: Optional[int] = None,
        details: Any = None,
        errors: Optional[List[str]] = None,
        correlation_id: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        self.errors = errors or []
        self.correlation_id = correlation_id
        self.retry_after = retry_after
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, status_code={self.status_code!r}, "
            f"correlation_id={self.correlation_id!r})"
        )


class UnauthorizedError(HmrcApiError):
    """
    Access token missing, invalid or expired at the HTTP layer.

    The API service refreshes once before letting this escape; when it does
    escape the user has to reconnect their HMRC account.
    """

    kind = ErrorKind.UNAUTHORIZED


class ResourceNotFoundError(HmrcApiError):
    """Requested resource does not exist (including "no business found")."""

    kind = ErrorKind.RESOURCE_NOT_FOUND


class ValidationError(HmrcApiError):
    """Malformed or rule-breaking request. Never retried."""

    kind = ErrorKind.VALIDATION


class RateLimitedError(HmrcApiError):
    """HMRC throttled the request."""

    kind = ErrorKind.RATE_LIMITED


class UpstreamUnavailableError(HmrcApiError):
    """HMRC 5xx, timeout or transport failure."""

    kind = ErrorKind.UPSTREAM_UNAVAILABLE


class UnknownHmrcError(HmrcApiError):
    """Anything that does not fit another category."""

    kind = ErrorKind.UNKNOWN


class IncompleteFraudHeadersError(Exception):
    """
    A mandatory fraud prevention header could not be populated.

    Raised before the request is sent. HMRC treats partial header sets as a
    fraud signal, so the call is blocked instead.
    """

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(f"Missing fraud prevention headers: {', '.join(self.missing)}")


ERROR_CLASSES = {
    ErrorKind.UNAUTHORIZED: UnauthorizedError,
    ErrorKind.RESOURCE_NOT_FOUND: ResourceNotFoundError,
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.RATE_LIMITED: RateLimitedError,
    ErrorKind.UPSTREAM_UNAVAILABLE: UpstreamUnavailableError,
    ErrorKind.UNKNOWN: UnknownHmrcError,
}
