"""
Error translation for HMRC API responses.

Turns raw upstream failures (HTTP status plus HMRC's ``code``/``message``
body, or a transport failure) into the closed ErrorKind taxonomy with
user-safe messages. Everything here is pure; nothing does I/O except the
module logger.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .exceptions import ERROR_CLASSES, ErrorKind, HmrcApiError

logger = logging.getLogger(__name__)

HMRC_ERROR_MESSAGES: Dict[str, str] = {
    # Format errors
    "FORMAT_NINO": "The National Insurance number format is invalid.",
    "FORMAT_TAX_YEAR": "The tax year format is invalid. Please use format YYYY-YY (e.g., 2025-26).",
    "FORMAT_BUSINESS_ID": "The business ID format is invalid.",
    "FORMAT_VALUE": "One of the values submitted has an invalid format.",
    "FORMAT_PERIOD_START_DATE": "The period start date format is invalid. Please use YYYY-MM-DD.",
    "FORMAT_PERIOD_END_DATE": "The period end date format is invalid. Please use YYYY-MM-DD.",
    "FORMAT_CALCULATION_ID": "The calculation ID format is invalid.",
    "FORMAT_STATUS": "The obligation status must be open or fulfilled.",
    # Rule errors
    "RULE_TAX_YEAR_NOT_SUPPORTED": "The specified tax year is not yet supported for MTD submissions.",
    "RULE_TAX_YEAR_RANGE_INVALID": "The tax year range is invalid.",
    "RULE_TAX_YEAR_NOT_ENDED": "The tax year has not yet ended. You cannot make a final declaration.",
    "RULE_INCORRECT_OR_EMPTY_BODY_SUBMITTED": "The request body is empty or contains invalid data.",
    "RULE_BOTH_EXPENSES_SUPPLIED": (
        "You cannot submit both itemised expenses and consolidated expenses. Please choose one option."
    ),
    "RULE_OBLIGATIONS_NOT_MET": (
        "You have not met all your quarterly obligations for this tax year. "
        "Please submit your quarterly updates first."
    ),
    "RULE_NO_INCOME_SUBMISSIONS_EXIST": (
        "No income submissions exist for this period. Please add your income data first."
    ),
    "RULE_ALREADY_SUBMITTED": "A submission for this period has already been made. You can amend it instead.",
    "RULE_PERIOD_NOT_IN_TAX_YEAR": "The specified period is not within the tax year.",
    "RULE_OVERLAPPING_PERIOD": "The period overlaps with an existing submission.",
    "RULE_MISALIGNED_PERIOD": "The period dates do not align with your quarterly obligations.",
    "RULE_NOT_CONTIGUOUS_PERIOD": "The period is not contiguous with the previous period.",
    "RULE_DUPLICATE_SUBMISSION": "A duplicate submission was detected.",
    "RULE_CLASS4_OVER_16": "Class 4 NICs are only applicable if you were under 66 at the start of the tax year.",
    "RULE_CLASS4_PENSION_AGE": "Class 4 NICs exemption applies due to reaching state pension age.",
    "RULE_FINAL_DECLARATION_RECEIVED": "A final declaration has already been submitted for this tax year.",
    "RULE_TAX_YEAR_FINALISED": "The tax year has been finalised and cannot be amended.",
    "RULE_NO_ACCOUNTING_PERIOD": "No accounting period is set up for this business.",
    "RULE_SUBMISSION_FAILED": "The submission failed. Please try again.",
    "RULE_INCORRECT_GOV_TEST_SCENARIO": "The test scenario header is invalid (sandbox only).",
    "RULE_INSOLVENT_TRADER": "Submissions cannot be made for an insolvent trader.",
    "RULE_BUSINESS_INCOME_PERIOD_RESTRICTION": (
        "You cannot submit income for this period due to restrictions on your account."
    ),
    "INVALID_REQUEST": "The request was invalid. Please check the submitted values.",
    # Resource errors
    "MATCHING_RESOURCE_NOT_FOUND": "No matching record found. Please check your business is registered for MTD.",
    "NO_BUSINESS_FOUND": "No business has been found for the provided details.",
    "NO_OBLIGATIONS_FOUND": "No obligations have been found for the provided details.",
    "BUSINESS_NOT_FOUND": "The specified business was not found.",
    "PERIOD_NOT_FOUND": "The specified period was not found.",
    "CALCULATION_NOT_FOUND": "The calculation could not be found.",
    # Authorisation errors
    "CLIENT_OR_AGENT_NOT_AUTHORISED": (
        "You are not authorised to access this resource. Please reconnect your HMRC account."
    ),
    "AGENT_NOT_SUBSCRIBED": "The agent is not subscribed to Agent Services. Please contact your agent.",
    "AGENT_NOT_AUTHORISED": (
        "The agent is not authorised to act on your behalf. Please authorise them through HMRC."
    ),
    "CLIENT_NOT_SUBSCRIBED": "You are not subscribed to MTD for Income Tax. Please sign up through HMRC.",
    "INVALID_CREDENTIALS": "Your HMRC credentials are invalid or have expired. Please reconnect.",
    "MISSING_CREDENTIALS": "Your HMRC session is missing. Please connect your HMRC account.",
    "INVALID_BEARER_TOKEN": "Your session has expired. Please reconnect your HMRC account.",
    "BEARER_TOKEN_EXPIRED": "Your HMRC session has expired. Please reconnect your account.",
    # Server errors
    "INTERNAL_SERVER_ERROR": "HMRC is experiencing technical issues. Please try again later.",
    "SERVICE_UNAVAILABLE": "The HMRC service is temporarily unavailable. Please try again later.",
    "SERVER_ERROR": "An unexpected error occurred on the HMRC server. Please try again later.",
    "GATEWAY_TIMEOUT": "The request to HMRC timed out. Please try again.",
    "NETWORK_ERROR": "Could not reach HMRC. Please check your connection and try again.",
    # Generic HTTP errors
    "NOT_FOUND": "The requested resource was not found.",
    "FORBIDDEN": "Access to this resource is forbidden.",
    "GONE": "This resource is no longer available.",
    "TOO_MANY_REQUESTS": "Too many requests have been made. Please wait a moment and try again.",
    "MESSAGE_THROTTLED_OUT": "Too many requests have been made. Please wait a moment and try again.",
    "ACCEPT_HEADER_INVALID": "The Accept header is invalid. This is a technical issue - please contact support.",
    "UNKNOWN_ERROR": "An unknown error occurred. Please try again or contact support.",
}

_CODE_KINDS: Dict[str, ErrorKind] = {
    "CLIENT_OR_AGENT_NOT_AUTHORISED": ErrorKind.UNAUTHORIZED,
    "AGENT_NOT_SUBSCRIBED": ErrorKind.UNAUTHORIZED,
    "AGENT_NOT_AUTHORISED": ErrorKind.UNAUTHORIZED,
    "CLIENT_NOT_SUBSCRIBED": ErrorKind.UNAUTHORIZED,
    "INVALID_CREDENTIALS": ErrorKind.UNAUTHORIZED,
    "MISSING_CREDENTIALS": ErrorKind.UNAUTHORIZED,
    "INVALID_BEARER_TOKEN": ErrorKind.UNAUTHORIZED,
    "BEARER_TOKEN_EXPIRED": ErrorKind.UNAUTHORIZED,
    "FORBIDDEN": ErrorKind.UNAUTHORIZED,
    "MATCHING_RESOURCE_NOT_FOUND": ErrorKind.RESOURCE_NOT_FOUND,
    "NO_BUSINESS_FOUND": ErrorKind.RESOURCE_NOT_FOUND,
    "NO_OBLIGATIONS_FOUND": ErrorKind.RESOURCE_NOT_FOUND,
    "BUSINESS_NOT_FOUND": ErrorKind.RESOURCE_NOT_FOUND,
    "PERIOD_NOT_FOUND": ErrorKind.RESOURCE_NOT_FOUND,
    "CALCULATION_NOT_FOUND": ErrorKind.RESOURCE_NOT_FOUND,
    "NOT_FOUND": ErrorKind.RESOURCE_NOT_FOUND,
    "GONE": ErrorKind.RESOURCE_NOT_FOUND,
    "INVALID_REQUEST": ErrorKind.VALIDATION,
    "ACCEPT_HEADER_INVALID": ErrorKind.VALIDATION,
    "TOO_MANY_REQUESTS": ErrorKind.RATE_LIMITED,
    "MESSAGE_THROTTLED_OUT": ErrorKind.RATE_LIMITED,
    "INTERNAL_SERVER_ERROR": ErrorKind.UPSTREAM_UNAVAILABLE,
    "SERVICE_UNAVAILABLE": ErrorKind.UPSTREAM_UNAVAILABLE,
    "SERVER_ERROR": ErrorKind.UPSTREAM_UNAVAILABLE,
    "GATEWAY_TIMEOUT": ErrorKind.UPSTREAM_UNAVAILABLE,
    "NETWORK_ERROR": ErrorKind.UPSTREAM_UNAVAILABLE,
    "UNKNOWN_ERROR": ErrorKind.UNKNOWN,
}

# Used when a recognised category has a code without its own message
_KIND_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.UNAUTHORIZED: HMRC_ERROR_MESSAGES["INVALID_BEARER_TOKEN"],
    ErrorKind.RESOURCE_NOT_FOUND: HMRC_ERROR_MESSAGES["NOT_FOUND"],
    ErrorKind.VALIDATION: "The request was rejected by HMRC. Please check the submitted values.",
    ErrorKind.RATE_LIMITED: HMRC_ERROR_MESSAGES["TOO_MANY_REQUESTS"],
    ErrorKind.UPSTREAM_UNAVAILABLE: HMRC_ERROR_MESSAGES["SERVICE_UNAVAILABLE"],
    ErrorKind.UNKNOWN: HMRC_ERROR_MESSAGES["UNKNOWN_ERROR"],
}

_STATUS_CODES: Dict[int, str] = {
    400: "FORMAT_VALUE",
    401: "INVALID_BEARER_TOKEN",
    403: "CLIENT_OR_AGENT_NOT_AUTHORISED",
    404: "NOT_FOUND",
    406: "ACCEPT_HEADER_INVALID",
    409: "RULE_DUPLICATE_SUBMISSION",
    410: "GONE",
    429: "TOO_MANY_REQUESTS",
    500: "INTERNAL_SERVER_ERROR",
    502: "SERVER_ERROR",
    503: "SERVICE_UNAVAILABLE",
    504: "GATEWAY_TIMEOUT",
}

RETRYABLE_CODES = {
    "INTERNAL_SERVER_ERROR",
    "SERVICE_UNAVAILABLE",
    "SERVER_ERROR",
    "GATEWAY_TIMEOUT",
    "TOO_MANY_REQUESTS",
    "MESSAGE_THROTTLED_OUT",
    "NETWORK_ERROR",
}

REAUTH_CODES = {
    "CLIENT_OR_AGENT_NOT_AUTHORISED",
    "INVALID_CREDENTIALS",
    "INVALID_BEARER_TOKEN",
    "BEARER_TOKEN_EXPIRED",
    "MISSING_CREDENTIALS",
}


@dataclass
class ParsedError:
    """
    Result of parsing an HMRC error payload.

    Attributes:
        message: User-safe message
        code: HMRC error code (or one derived from the HTTP status)
        kind: Taxonomy category
        details: Raw upstream payload, for logs only
        errors: Per-field messages from a nested ``errors`` array
    """

    message: str
    code: str
    kind: ErrorKind
    details: Any = None
    errors: List[str] = field(default_factory=list)


def get_error_message(code: Optional[str]) -> str:
    """Look up the user-facing message for an HMRC error code."""
    return HMRC_ERROR_MESSAGES.get(code or "", HMRC_ERROR_MESSAGES["UNKNOWN_ERROR"])


def http_status_to_error_code(status_code: int) -> str:
    """Map a bare HTTP status to the closest HMRC error code."""
    return _STATUS_CODES.get(status_code, "UNKNOWN_ERROR")


def is_retryable_error(code: str) -> bool:
    return code in RETRYABLE_CODES


def requires_reauth(code: str) -> bool:
    return code in REAUTH_CODES


def _code_kind(code: str) -> Optional[ErrorKind]:
    if code in _CODE_KINDS:
        return _CODE_KINDS[code]
    if code.startswith(("FORMAT_", "RULE_")):
        return ErrorKind.VALIDATION
    if code.endswith("_NOT_FOUND"):
        return ErrorKind.RESOURCE_NOT_FOUND
    return None


def classify(code: Optional[str], status_code: Optional[int] = None) -> ErrorKind:
    """
    Decide the taxonomy category for an error.

    A recognised upstream code wins over the HTTP status. An unrecognised
    code on a 429 or 5xx response still follows the status, so the call
    stays retryable; any other unrecognised code is ``Unknown``.

    Args:
        code: HMRC error code, if the body had one
        status_code: HTTP status, if there was a response

    Returns:
        ErrorKind for the error
    """
    if code:
        known = _code_kind(code)
        if known is not None:
            return known
        if status_code == 429:
            return ErrorKind.RATE_LIMITED
        if status_code is not None and status_code >= 500:
            return ErrorKind.UPSTREAM_UNAVAILABLE
        return ErrorKind.UNKNOWN

    if status_code is None:
        return ErrorKind.UNKNOWN
    if status_code in (401, 403):
        return ErrorKind.UNAUTHORIZED
    if status_code in (404, 410):
        return ErrorKind.RESOURCE_NOT_FOUND
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code >= 500:
        return ErrorKind.UPSTREAM_UNAVAILABLE
    if 400 <= status_code < 500:
        return ErrorKind.VALIDATION
    return ErrorKind.UNKNOWN


def parse_hmrc_error(raw: Any, status_code: Optional[int] = None) -> ParsedError:
    """
    Parse an HMRC error payload into a user-safe error.

    HMRC error bodies look like ``{"code": ..., "message": ..., "errors": [...]}``
    where each nested error may carry a ``path`` naming the offending field.
    Non-dict payloads (HTML error pages, empty bodies) are kept as details
    and classified by status alone.

    Args:
        raw: Decoded response body (dict, list, string or None)
        status_code: HTTP status of the response

    Returns:
        ParsedError with message, code, kind, details and per-field errors
    """
    code = None
    nested: list = []
    if isinstance(raw, dict):
        code = raw.get("code") or raw.get("error")
        nested = raw.get("errors") or []
        if not code and nested and isinstance(nested[0], dict):
            code = nested[0].get("code")
    elif isinstance(raw, list):
        nested = raw
        if raw and isinstance(raw[0], dict):
            code = raw[0].get("code")

    code = code if isinstance(code, str) and code else None
    kind = classify(code, status_code)
    if code is not None and code not in HMRC_ERROR_MESSAGES and _code_kind(code) is None:
        logger.warning(f"Unrecognised HMRC error code {code!r} (status {status_code}): {raw!r}")

    if code is None:
        code = http_status_to_error_code(status_code) if status_code else "UNKNOWN_ERROR"

    if code in HMRC_ERROR_MESSAGES:
        message = HMRC_ERROR_MESSAGES[code]
    else:
        message = _KIND_MESSAGES[kind]

    field_errors = []
    for item in nested:
        if not isinstance(item, dict):
            continue
        item_message = get_error_message(item.get("code"))
        path = item.get("path")
        if path:
            field_errors.append(f"{item_message} (Field: {path})")
        else:
            field_errors.append(item_message)

    return ParsedError(message=message, code=code, kind=kind, details=raw, errors=field_errors)


def format_error_for_display(raw: Any, status_code: Optional[int] = None) -> str:
    """Render an error payload as a multi-line message for display."""
    parsed = parse_hmrc_error(raw, status_code)
    if parsed.errors:
        bullets = "\n".join(f"- {line}" for line in parsed.errors)
        return f"{parsed.message}\n\nDetails:\n{bullets}"
    return parsed.message


def error_from_parsed(
    parsed: ParsedError,
    status_code: Optional[int] = None,
    correlation_id: Optional[str] = None,
    retry_after: Optional[float] = None,
) -> HmrcApiError:
    """Build the typed exception for a parsed error."""
    error_class = ERROR_CLASSES[parsed.kind]
    return error_class(
        parsed.message,
        code=parsed.code,
        status_code=status_code,
        details=parsed.details,
        errors=parsed.errors,
        correlation_id=correlation_id,
        retry_after=retry_after,
    )


def translate_response(response: httpx.Response) -> HmrcApiError:
    """
    Translate a non-2xx HMRC response into a typed exception.

    Args:
        response: The failed response

    Returns:
        HmrcApiError subclass matching the error category
    """
    try:
        body = response.json()
    except ValueError:
        body = response.text or None

    parsed = parse_hmrc_error(body, response.status_code)
    return error_from_parsed(
        parsed,
        status_code=response.status_code,
        correlation_id=response.headers.get("X-CorrelationId"),
        retry_after=parse_retry_after(response.headers.get("Retry-After")),
    )


def translate_transport_error(exc: Exception) -> HmrcApiError:
    """Classify a transport failure (DNS, reset, timeout) as upstream unavailable."""
    code = "GATEWAY_TIMEOUT" if isinstance(exc, httpx.TimeoutException) else "NETWORK_ERROR"
    parsed = ParsedError(
        message=HMRC_ERROR_MESSAGES[code],
        code=code,
        kind=ErrorKind.UPSTREAM_UNAVAILABLE,
        details=f"{type(exc).__name__}: {exc}",
    )
    return error_from_parsed(parsed, status_code=None)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a numeric Retry-After header. HTTP-date values are ignored."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return max(seconds, 0.0)
