"""Tests for the HMRC API audit log."""

from datetime import timedelta

import pytest

from src.hmrc.api_logger import (
    MAX_LIMIT,
    RECENT_ERRORS,
    REDACTED,
    ApiLogEntry,
    ApiLogFilter,
    ApiLogger,
    InMemoryLogStore,
    mask_nino,
    sanitize_body,
)


@pytest.fixture
def store():
    return InMemoryLogStore()


@pytest.fixture
def api_logger(store, clock):
    return ApiLogger(store, clock=clock)


def _entry(clock, seconds_ago=0, status=200, user_id="user-1", **overrides):
    values = dict(
        user_id=user_id,
        method="GET",
        endpoint="/individuals/business/details/AA123456A/list",
        response_status=status,
        duration_ms=12,
        timestamp=clock() - timedelta(seconds=seconds_ago),
    )
    values.update(overrides)
    return ApiLogEntry(**values)


class TestSanitize:
    def test_mask_nino(self):
        assert mask_nino("/details/AA123456A/list") == "/details/AA******A/list"
        assert mask_nino("no identifiers here") == "no identifiers here"

    def test_sensitive_keys_redacted_recursively(self):
        body = {
            "access_token": "secret-value",
            "Authorization": "Bearer x",
            "nested": {"clientSecret": "s", "sort-code": "01-02-03", "amount": 10},
            "items": [{"refreshToken": "r", "note": "nino AB123456C"}],
        }

        result = sanitize_body(body)

        assert result["access_token"] == REDACTED
        assert result["Authorization"] == REDACTED
        assert result["nested"] == {"clientSecret": REDACTED, "sort-code": REDACTED, "amount": 10}
        assert result["items"] == [{"refreshToken": REDACTED, "note": "nino AB******C"}]
        assert body["access_token"] == "secret-value"

    def test_scalars_pass_through(self):
        assert sanitize_body(None) is None
        assert sanitize_body(5) == 5


class TestApiLogEntry:
    def test_error_flags(self, clock):
        assert _entry(clock, status=200).is_success
        assert _entry(clock, status=404).is_error
        assert _entry(clock, status=0, error_code="NETWORK_ERROR").is_error
        assert not _entry(clock, status=200).is_error

    def test_filter_rejects_unknown_status(self):
        with pytest.raises(ValueError):
            ApiLogFilter(status="maybe")


class TestApiLogger:
    @pytest.mark.asyncio
    async def test_log_api_call_sanitizes(self, api_logger, store, clock):
        await api_logger.log_api_call(
            _entry(
                clock,
                request_body={"nino": "AA123456A", "periodIncome": {"turnover": 10}},
                error_message="Failed for AA123456A",
            )
        )

        [stored] = store.entries
        assert stored.id == 1
        assert stored.endpoint == "/individuals/business/details/AA******A/list"
        assert stored.request_body == {"nino": REDACTED, "periodIncome": {"turnover": 10}}
        assert stored.error_message == "Failed for AA******A"

    @pytest.mark.asyncio
    async def test_store_failure_is_swallowed(self, clock, caplog):
        class BrokenStore(InMemoryLogStore):
            async def insert(self, entry):
                raise RuntimeError("disk full")

        api_logger = ApiLogger(BrokenStore(), clock=clock)

        await api_logger.log_api_call(_entry(clock))

        assert "Failed to log API call" in caplog.text

    @pytest.mark.asyncio
    async def test_get_api_logs_filters_newest_first(self, api_logger, clock):
        await api_logger.log_api_call(_entry(clock, seconds_ago=30, status=200))
        await api_logger.log_api_call(_entry(clock, seconds_ago=20, status=500))
        await api_logger.log_api_call(_entry(clock, seconds_ago=10, status=200, endpoint="/obligations/x"))
        await api_logger.log_api_call(_entry(clock, user_id="user-2"))

        mine = await api_logger.get_api_logs(ApiLogFilter(user_id="user-1"))
        errors = await api_logger.get_api_logs(ApiLogFilter(user_id="user-1", status="error"))
        obligations = await api_logger.get_api_logs(ApiLogFilter(user_id="user-1", endpoint="OBLIGATIONS"))

        assert [e.id for e in mine] == [3, 2, 1]
        assert [e.response_status for e in errors] == [500]
        assert [e.id for e in obligations] == [3]

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, api_logger, clock):
        await api_logger.log_api_call(_entry(clock))

        assert len(await api_logger.get_api_logs(ApiLogFilter(limit=0))) == 1
        oversized = ApiLogFilter(limit=MAX_LIMIT * 10)
        await api_logger.get_api_logs(oversized)
        assert oversized.limit == MAX_LIMIT * 10

    @pytest.mark.asyncio
    async def test_error_summary(self, api_logger, clock):
        await api_logger.log_api_call(_entry(clock, status=400, error_code="FORMAT_NINO"))
        await api_logger.log_api_call(_entry(clock, status=400, error_code="FORMAT_NINO"))
        await api_logger.log_api_call(_entry(clock, status=503))
        await api_logger.log_api_call(_entry(clock, status=200))
        await api_logger.log_api_call(_entry(clock, status=500, seconds_ago=8 * 86400))

        summary = await api_logger.get_error_summary("user-1", days=7)

        assert summary.total_errors == 3
        assert summary.errors_by_code == {"FORMAT_NINO": 2, "HTTP_503": 1}
        assert len(summary.recent_errors) == 3
        assert summary.to_dict()["totalErrors"] == 3

    @pytest.mark.asyncio
    async def test_error_summary_counts_beyond_query_limit(self, api_logger, store, clock):
        """Totals cover every error in the window; only the recent list is capped."""
        for i in range(MAX_LIMIT + 200):
            await store.insert(_entry(clock, seconds_ago=i, status=503 if i % 2 else 400, error_code=None))

        summary = await api_logger.get_error_summary("user-1", days=7)

        assert summary.total_errors == 1200
        assert summary.errors_by_code == {"HTTP_400": 600, "HTTP_503": 600}
        assert len(summary.recent_errors) == RECENT_ERRORS
        assert summary.recent_errors[0].response_status == 400

    @pytest.mark.asyncio
    async def test_clear_old_logs_keeps_boundary(self, api_logger, store, clock):
        """An entry exactly at the cutoff survives; older ones are removed."""
        await api_logger.log_api_call(_entry(clock, seconds_ago=30 * 86400 + 1))
        await api_logger.log_api_call(_entry(clock, seconds_ago=30 * 86400))
        await api_logger.log_api_call(_entry(clock))

        deleted = await api_logger.clear_old_logs(30)

        assert deleted == 1
        assert [e.id for e in store.entries] == [2, 3]

    @pytest.mark.asyncio
    async def test_clear_old_logs_rejects_negative(self, api_logger):
        with pytest.raises(ValueError):
            await api_logger.clear_old_logs(-1)
