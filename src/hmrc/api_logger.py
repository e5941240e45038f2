"""
Audit log of HMRC API calls.

Every outbound call is recorded after it settles, with request and response
bodies sanitized first. The log is append-only; the retention prune in
``clear_old_logs`` is the only path that removes entries.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol

from src.utils.date_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

# Key fragments, matched against lower-cased keys with separators removed
SENSITIVE_KEY_FRAGMENTS = (
    "password",
    "token",
    "secret",
    "authorization",
    "nino",
    "accountnumber",
    "sortcode",
    "iban",
)

NINO_PATTERN = re.compile(r"\b([A-Za-z]{2})\d{6}([A-Da-d])\b")

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000
RECENT_ERRORS = 10


def mask_nino(text: str) -> str:
    """Mask National Insurance numbers embedded in a string."""
    return NINO_PATTERN.sub(r"\1******\2", text)


def error_bucket(error_code: Optional[str], response_status: int) -> str:
    """Summary key for an error entry: its code, else ``HTTP_<status>``."""
    return error_code or f"HTTP_{response_status}"


def _is_sensitive_key(key: Any) -> bool:
    normalized = str(key).lower().replace("_", "").replace("-", "")
    return any(fragment in normalized for fragment in SENSITIVE_KEY_FRAGMENTS)


def sanitize_body(body: Any) -> Any:
    """
    Recursively redact secrets from a request or response body.

    Values under sensitive keys are replaced wholesale; NINO-shaped
    substrings in any other string are masked.

    Args:
        body: Decoded JSON body (dict, list, scalar or None)

    Returns:
        A sanitized copy; the input is not modified
    """
    if isinstance(body, dict):
        return {
            key: REDACTED if _is_sensitive_key(key) else sanitize_body(value)
            for key, value in body.items()
        }
    if isinstance(body, (list, tuple)):
        return [sanitize_body(item) for item in body]
    if isinstance(body, str):
        return mask_nino(body)
    return body


@dataclass(frozen=True)
class ApiLogEntry:
    """
    Immutable audit record for one outbound HMRC call.

    ``response_status`` is 0 when no HTTP response was received (transport
    failure or cancellation); ``error_code`` then says which.
    """

    user_id: str
    method: str
    endpoint: str
    response_status: int
    duration_ms: int
    timestamp: datetime = field(default_factory=utc_now)
    request_body: Any = None
    response_body: Any = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    correlation_id: Optional[str] = None
    gov_test_scenario: Optional[str] = None
    id: Optional[int] = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.response_status < 300

    @property
    def is_error(self) -> bool:
        return self.response_status >= 400 or self.error_code is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "timestamp": ensure_utc(self.timestamp).isoformat(),
            "method": self.method,
            "endpoint": self.endpoint,
            "request_body": self.request_body,
            "response_status": self.response_status,
            "response_body": self.response_body,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "duration_ms": self.duration_ms,
            "correlation_id": self.correlation_id,
            "gov_test_scenario": self.gov_test_scenario,
        }


@dataclass
class ApiLogFilter:
    """
    Query filter for the API log.

    Attributes:
        user_id: Only this user's entries
        endpoint: Case-insensitive substring of the endpoint path
        status: "success" (2xx), "error" (>=400 or error code) or "all"
        start_date: Entries at or after this instant
        end_date: Entries at or before this instant
        limit: Maximum number of entries returned, newest first
    """

    user_id: Optional[str] = None
    endpoint: Optional[str] = None
    status: str = "all"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: int = DEFAULT_LIMIT

    def __post_init__(self) -> None:
        if self.status not in ("success", "error", "all"):
            raise ValueError(f"status must be 'success', 'error' or 'all', got {self.status!r}")
        self.start_date = ensure_utc(self.start_date)
        self.end_date = ensure_utc(self.end_date)

    def matches(self, entry: ApiLogEntry) -> bool:
        if self.user_id is not None and entry.user_id != self.user_id:
            return False
        if self.endpoint and self.endpoint.lower() not in entry.endpoint.lower():
            return False
        if self.status == "success" and not entry.is_success:
            return False
        if self.status == "error" and not entry.is_error:
            return False
        timestamp = ensure_utc(entry.timestamp)
        if self.start_date and timestamp < self.start_date:
            return False
        if self.end_date and timestamp > self.end_date:
            return False
        return True


@dataclass
class ErrorSummary:
    """Error counts for one user over a trailing window."""

    total_errors: int
    errors_by_code: Dict[str, int]
    recent_errors: List[ApiLogEntry]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalErrors": self.total_errors,
            "errorsByCode": self.errors_by_code,
            "recentErrors": [entry.to_dict() for entry in self.recent_errors],
        }


class LogStore(Protocol):
    """Persistence for API log entries."""

    async def insert(self, entry: ApiLogEntry) -> None:
        ...

    async def query(self, log_filter: ApiLogFilter) -> List[ApiLogEntry]:
        """Matching entries, newest first, at most ``log_filter.limit``."""
        ...

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete entries with ``timestamp < cutoff``; return the count."""
        ...

    async def count_errors(self, user_id: str, start_date: datetime) -> Dict[str, int]:
        """Error counts since ``start_date`` keyed by ``error_bucket``, over all matching rows."""
        ...


class InMemoryLogStore:
    """List-backed log store for tests and single-process use."""

    def __init__(self) -> None:
        self._entries: List[ApiLogEntry] = []
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def insert(self, entry: ApiLogEntry) -> None:
        async with self._lock:
            self._entries.append(replace(entry, id=self._next_id))
            self._next_id += 1

    async def query(self, log_filter: ApiLogFilter) -> List[ApiLogEntry]:
        async with self._lock:
            matched = [entry for entry in self._entries if log_filter.matches(entry)]
        matched.sort(key=lambda entry: (ensure_utc(entry.timestamp), entry.id or 0), reverse=True)
        return matched[: log_filter.limit]

    async def delete_older_than(self, cutoff: datetime) -> int:
        cutoff = ensure_utc(cutoff)
        async with self._lock:
            kept = [entry for entry in self._entries if ensure_utc(entry.timestamp) >= cutoff]
            deleted = len(self._entries) - len(kept)
            self._entries = kept
        return deleted

    async def count_errors(self, user_id: str, start_date: datetime) -> Dict[str, int]:
        log_filter = ApiLogFilter(user_id=user_id, status="error", start_date=start_date)
        counts: Dict[str, int] = {}
        async with self._lock:
            for entry in self._entries:
                if log_filter.matches(entry):
                    key = error_bucket(entry.error_code, entry.response_status)
                    counts[key] = counts.get(key, 0) + 1
        return counts

    @property
    def entries(self) -> List[ApiLogEntry]:
        return list(self._entries)


class ApiLogger:
    """
    Writes and reads the HMRC API audit log.

    Example:
        api_logger = ApiLogger(InMemoryLogStore())
        await api_logger.log_api_call(entry)
        summary = await api_logger.get_error_summary(user_id)
    """

    def __init__(self, store: LogStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    async def log_api_call(self, entry: ApiLogEntry) -> None:
        """
        Record one API call.

        Bodies and the endpoint are sanitized before the write. A failing
        store is reported on the module logger and never raised.
        """
        try:
            sanitized = replace(
                entry,
                endpoint=mask_nino(entry.endpoint),
                request_body=sanitize_body(entry.request_body),
                response_body=sanitize_body(entry.response_body),
                error_message=mask_nino(entry.error_message) if entry.error_message else None,
            )
            await self.store.insert(sanitized)
        except Exception:
            logger.exception(
                f"Failed to log API call {entry.method} {mask_nino(entry.endpoint)} "
                f"for user {entry.user_id}"
            )

    async def get_api_logs(self, log_filter: Optional[ApiLogFilter] = None) -> List[ApiLogEntry]:
        """
        Fetch log entries, newest first.

        The limit is clamped to ``1..MAX_LIMIT``.
        """
        log_filter = replace(log_filter) if log_filter else ApiLogFilter()
        log_filter.limit = max(1, min(log_filter.limit or DEFAULT_LIMIT, MAX_LIMIT))
        return await self.store.query(log_filter)

    async def get_error_summary(self, user_id: str, days: int = 7) -> ErrorSummary:
        """
        Summarize a user's errors over the trailing ``days``.

        Errors are bucketed by error code, or ``HTTP_<status>`` when the
        entry has no code. Counts cover every error in the window; only
        ``recent_errors`` is capped.
        """
        start = self.clock() - timedelta(days=days)
        errors_by_code = await self.store.count_errors(user_id, start)
        recent = await self.store.query(
            ApiLogFilter(user_id=user_id, status="error", start_date=start, limit=RECENT_ERRORS)
        )

        return ErrorSummary(
            total_errors=sum(errors_by_code.values()),
            errors_by_code=errors_by_code,
            recent_errors=recent,
        )

    async def clear_old_logs(self, days_to_keep: int = 30) -> int:
        """
        Delete entries older than ``days_to_keep`` days.

        An entry exactly at the cutoff is kept.

        Returns:
            Number of deleted entries
        """
        if days_to_keep < 0:
            raise ValueError("days_to_keep cannot be negative")
        cutoff = self.clock() - timedelta(days=days_to_keep)
        deleted = await self.store.delete_older_than(cutoff)
        logger.info(f"Cleared {deleted} API log entries older than {cutoff.isoformat()}")
        return deleted
