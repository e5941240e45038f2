"""Tests for HMRC error translation."""

import httpx
import pytest

from src.hmrc.errors import (
    classify,
    format_error_for_display,
    get_error_message,
    http_status_to_error_code,
    is_retryable_error,
    parse_hmrc_error,
    parse_retry_after,
    requires_reauth,
    translate_response,
    translate_transport_error,
)
from src.hmrc.exceptions import (
    ErrorKind,
    RateLimitedError,
    ResourceNotFoundError,
    UnknownHmrcError,
    UpstreamUnavailableError,
    ValidationError,
)


class TestClassify:
    """Code and status classification."""

    @pytest.mark.parametrize(
        "code,kind",
        [
            ("INVALID_BEARER_TOKEN", ErrorKind.UNAUTHORIZED),
            ("CLIENT_OR_AGENT_NOT_AUTHORISED", ErrorKind.UNAUTHORIZED),
            ("NO_BUSINESS_FOUND", ErrorKind.RESOURCE_NOT_FOUND),
            ("MATCHING_RESOURCE_NOT_FOUND", ErrorKind.RESOURCE_NOT_FOUND),
            ("SOMETHING_NOT_FOUND", ErrorKind.RESOURCE_NOT_FOUND),
            ("FORMAT_NINO", ErrorKind.VALIDATION),
            ("RULE_BRAND_NEW", ErrorKind.VALIDATION),
            ("MESSAGE_THROTTLED_OUT", ErrorKind.RATE_LIMITED),
            ("SERVICE_UNAVAILABLE", ErrorKind.UPSTREAM_UNAVAILABLE),
            ("COMPLETELY_NEW_CODE", ErrorKind.UNKNOWN),
        ],
    )
    def test_code_wins(self, code, kind):
        """An explicit code decides the category regardless of status."""
        assert classify(code, 400) == kind

    @pytest.mark.parametrize(
        "status_code,kind",
        [
            (401, ErrorKind.UNAUTHORIZED),
            (403, ErrorKind.UNAUTHORIZED),
            (404, ErrorKind.RESOURCE_NOT_FOUND),
            (422, ErrorKind.VALIDATION),
            (429, ErrorKind.RATE_LIMITED),
            (502, ErrorKind.UPSTREAM_UNAVAILABLE),
            (302, ErrorKind.UNKNOWN),
            (None, ErrorKind.UNKNOWN),
        ],
    )
    def test_status_fallback(self, status_code, kind):
        assert classify(None, status_code) == kind

    def test_retryability_follows_kind(self):
        assert ErrorKind.RATE_LIMITED.retryable is True
        assert ErrorKind.UPSTREAM_UNAVAILABLE.retryable is True
        assert ErrorKind.VALIDATION.retryable is False
        assert ErrorKind.UNAUTHORIZED.retryable is False


class TestParseHmrcError:
    """Tests for parse_hmrc_error."""

    def test_known_code_uses_table_message(self):
        parsed = parse_hmrc_error({"code": "FORMAT_NINO", "message": "raw upstream text"}, 400)

        assert parsed.code == "FORMAT_NINO"
        assert parsed.kind == ErrorKind.VALIDATION
        assert parsed.message == get_error_message("FORMAT_NINO")
        assert "raw upstream text" not in parsed.message

    def test_nested_errors_name_fields(self):
        """Nested errors become per-field messages."""
        raw = {
            "code": "INVALID_REQUEST",
            "message": "Invalid request",
            "errors": [
                {"code": "FORMAT_VALUE", "message": "bad", "paths": [], "path": "/periodIncome/turnover"},
                {"code": "RULE_BOTH_EXPENSES_SUPPLIED"},
            ],
        }

        parsed = parse_hmrc_error(raw, 400)

        assert parsed.kind == ErrorKind.VALIDATION
        assert parsed.errors == [
            f"{get_error_message('FORMAT_VALUE')} (Field: /periodIncome/turnover)",
            get_error_message("RULE_BOTH_EXPENSES_SUPPLIED"),
        ]

    def test_unknown_code_is_unknown_and_logged(self, caplog):
        parsed = parse_hmrc_error({"code": "BRAND_NEW_CODE"}, 400)

        assert parsed.kind == ErrorKind.UNKNOWN
        assert parsed.code == "BRAND_NEW_CODE"
        assert parsed.message == get_error_message("UNKNOWN_ERROR")
        assert "BRAND_NEW_CODE" in caplog.text

    @pytest.mark.parametrize(
        "status_code,kind",
        [
            (503, ErrorKind.UPSTREAM_UNAVAILABLE),
            (500, ErrorKind.UPSTREAM_UNAVAILABLE),
            (429, ErrorKind.RATE_LIMITED),
        ],
    )
    def test_unrecognised_code_on_retryable_status(self, status_code, kind, caplog):
        """A new code on a 5xx or 429 keeps the status category and its raw code."""
        parsed = parse_hmrc_error({"code": "DOWNSTREAM_ERROR"}, status_code)

        assert parsed.kind == kind
        assert parsed.kind.retryable is True
        assert parsed.code == "DOWNSTREAM_ERROR"
        assert parsed.details == {"code": "DOWNSTREAM_ERROR"}
        assert "DOWNSTREAM_ERROR" in caplog.text

    def test_html_body_classified_by_status(self):
        parsed = parse_hmrc_error("<html>Bad Gateway</html>", 502)

        assert parsed.code == "SERVER_ERROR"
        assert parsed.kind == ErrorKind.UPSTREAM_UNAVAILABLE
        assert parsed.details == "<html>Bad Gateway</html>"

    def test_list_payload(self):
        parsed = parse_hmrc_error([{"code": "NO_BUSINESS_FOUND"}], 404)

        assert parsed.code == "NO_BUSINESS_FOUND"
        assert parsed.kind == ErrorKind.RESOURCE_NOT_FOUND

    def test_format_for_display(self):
        raw = {"code": "INVALID_REQUEST", "errors": [{"code": "FORMAT_NINO", "path": "/nino"}]}

        text = format_error_for_display(raw, 400)

        assert text.startswith(get_error_message("INVALID_REQUEST"))
        assert "Details:\n- " in text
        assert "(Field: /nino)" in text


class TestHelpers:
    def test_status_to_code(self):
        assert http_status_to_error_code(429) == "TOO_MANY_REQUESTS"
        assert http_status_to_error_code(418) == "UNKNOWN_ERROR"

    def test_retryable_and_reauth_codes(self):
        assert is_retryable_error("SERVICE_UNAVAILABLE")
        assert not is_retryable_error("FORMAT_NINO")
        assert requires_reauth("INVALID_BEARER_TOKEN")
        assert not requires_reauth("NOT_FOUND")

    @pytest.mark.parametrize("value,expected", [("5", 5.0), ("0.5", 0.5), ("-3", 0.0), (None, None), ("soon", None)])
    def test_parse_retry_after(self, value, expected):
        assert parse_retry_after(value) == expected


class TestTranslate:
    """Response and transport translation."""

    def test_translate_response_reads_headers(self):
        response = httpx.Response(
            429,
            json={"code": "MESSAGE_THROTTLED_OUT", "message": "slow down"},
            headers={"X-CorrelationId": "corr-1", "Retry-After": "2"},
        )

        error = translate_response(response)

        assert isinstance(error, RateLimitedError)
        assert error.code == "MESSAGE_THROTTLED_OUT"
        assert error.status_code == 429
        assert error.correlation_id == "corr-1"
        assert error.retry_after == 2.0
        assert error.retryable is True

    def test_translate_not_found(self):
        error = translate_response(httpx.Response(404, json={"code": "NO_BUSINESS_FOUND"}))

        assert isinstance(error, ResourceNotFoundError)

    def test_translate_empty_body_validation(self):
        error = translate_response(httpx.Response(400))

        assert isinstance(error, ValidationError)
        assert error.code == "FORMAT_VALUE"

    def test_translate_unknown(self):
        error = translate_response(httpx.Response(400, json={"code": "NEVER_SEEN"}))

        assert isinstance(error, UnknownHmrcError)
        assert error.retryable is False

    def test_transport_errors(self):
        network = translate_transport_error(httpx.ConnectError("refused"))
        timeout = translate_transport_error(httpx.ReadTimeout("slow"))

        assert isinstance(network, UpstreamUnavailableError)
        assert network.code == "NETWORK_ERROR"
        assert network.status_code is None
        assert timeout.code == "GATEWAY_TIMEOUT"
