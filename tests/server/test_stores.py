"""Tests for the SQLAlchemy-backed async stores."""

from datetime import datetime, timedelta, timezone

import pytest

from src.hmrc.api_logger import ApiLogEntry, ApiLogFilter, ApiLogger
from src.oauth.state import AuthorizationState
from src.oauth.token_storage import OAuthTokenRecord
from src.server.stores import SqlAuthStateStore, SqlLogStore, SqlTokenStore

NOW = datetime(2025, 9, 21, 14, 30, 5, tzinfo=timezone.utc)


def _record(access="access-1", refresh="refresh-1", issued_at=NOW):
    return OAuthTokenRecord(
        user_id="user-1",
        access_token=access,
        refresh_token=refresh,
        expires_at=issued_at + timedelta(hours=4),
        scope="read:self-assessment write:self-assessment",
        created_at=issued_at,
        updated_at=issued_at,
    )


class TestSqlTokenStore:
    """Tests for token persistence."""

    @pytest.mark.asyncio
    async def test_round_trip_returns_aware_datetimes(self, session_factory):
        store = SqlTokenStore(session_factory)
        await store.upsert(_record())

        loaded = await store.get("user-1")

        assert loaded.access_token == "access-1"
        assert loaded.expires_at == NOW + timedelta(hours=4)
        assert loaded.expires_at.tzinfo is not None
        assert loaded.scope == "read:self-assessment write:self-assessment"

    @pytest.mark.asyncio
    async def test_refresh_keeps_created_at(self, session_factory):
        store = SqlTokenStore(session_factory)
        await store.upsert(_record())
        later = NOW + timedelta(hours=3)

        await store.upsert(_record(access="access-2", refresh="refresh-2", issued_at=later))
        loaded = await store.get("user-1")

        assert loaded.refresh_token == "refresh-2"
        assert loaded.created_at == NOW
        assert loaded.updated_at == later

    @pytest.mark.asyncio
    async def test_get_unknown_user(self, session_factory):
        assert await SqlTokenStore(session_factory).get("nobody") is None

    @pytest.mark.asyncio
    async def test_delete(self, session_factory):
        store = SqlTokenStore(session_factory)
        await store.upsert(_record())

        await store.delete("user-1")
        await store.delete("user-1")

        assert await store.get("user-1") is None


class TestSqlAuthStateStore:
    @pytest.mark.asyncio
    async def test_consume_once(self, session_factory):
        store = SqlAuthStateStore(session_factory)
        now = datetime.now(timezone.utc)
        await store.save(
            AuthorizationState(state="abc", user_id="user-1", created_at=now, expires_at=now + timedelta(minutes=10))
        )

        first = await store.consume("abc")
        second = await store.consume("abc")

        assert first.user_id == "user-1"
        assert first.expires_at.tzinfo is not None
        assert not first.is_expired(now)
        assert second is None

    @pytest.mark.asyncio
    async def test_save_prunes_expired_states(self, session_factory):
        store = SqlAuthStateStore(session_factory)
        now = datetime.now(timezone.utc)
        await store.save(
            AuthorizationState(
                state="stale",
                user_id="user-1",
                created_at=now - timedelta(hours=1),
                expires_at=now - timedelta(minutes=50),
            )
        )
        await store.save(
            AuthorizationState(state="fresh", user_id="user-1", created_at=now, expires_at=now + timedelta(minutes=10))
        )

        assert await store.consume("stale") is None
        assert await store.consume("fresh") is not None


class TestSqlLogStore:
    """Tests for audit log persistence."""

    def _entry(self, minutes_ago=0, status=200, user_id="user-1", error_code=None):
        return ApiLogEntry(
            user_id=user_id,
            method="GET",
            endpoint="/obligations/details/AA******A/income-and-expenditure",
            response_status=status,
            duration_ms=40,
            timestamp=NOW - timedelta(minutes=minutes_ago),
            response_body={"code": error_code} if error_code else {"obligations": []},
            error_code=error_code,
            correlation_id="corr-1",
            gov_test_scenario="OPEN",
        )

    @pytest.mark.asyncio
    async def test_insert_and_query(self, session_factory):
        store = SqlLogStore(session_factory)
        await store.insert(self._entry(minutes_ago=5))
        await store.insert(self._entry(minutes_ago=1, status=400, error_code="FORMAT_NINO"))

        entries = await store.query(ApiLogFilter(user_id="user-1"))

        assert [e.response_status for e in entries] == [400, 200]
        assert entries[0].id is not None
        assert entries[0].timestamp == NOW - timedelta(minutes=1)
        assert entries[0].response_body == {"code": "FORMAT_NINO"}
        assert entries[1].gov_test_scenario == "OPEN"

    @pytest.mark.asyncio
    async def test_query_filters(self, session_factory):
        store = SqlLogStore(session_factory)
        await store.insert(self._entry(minutes_ago=90))
        await store.insert(self._entry(minutes_ago=10, status=503, error_code="SERVER_ERROR"))
        await store.insert(self._entry(user_id="user-2"))

        errors = await store.query(ApiLogFilter(user_id="user-1", status="error"))
        recent = await store.query(ApiLogFilter(user_id="user-1", start_date=NOW - timedelta(hours=1)))

        assert [e.error_code for e in errors] == ["SERVER_ERROR"]
        assert len(recent) == 1

    @pytest.mark.asyncio
    async def test_error_summary_over_sql(self, session_factory):
        store = SqlLogStore(session_factory)
        await store.insert(self._entry(minutes_ago=1, status=400, error_code="FORMAT_NINO"))
        await store.insert(self._entry(minutes_ago=2, status=400, error_code="FORMAT_NINO"))
        await store.insert(self._entry(minutes_ago=3, status=503))
        await store.insert(self._entry(minutes_ago=4))
        await store.insert(self._entry(minutes_ago=5, status=500, user_id="user-2"))

        summary = await ApiLogger(store, clock=lambda: NOW).get_error_summary("user-1", days=1)

        assert summary.total_errors == 3
        assert summary.errors_by_code == {"FORMAT_NINO": 2, "HTTP_503": 1}
        assert [e.response_status for e in summary.recent_errors] == [400, 400, 503]

    @pytest.mark.asyncio
    async def test_delete_older_than(self, session_factory):
        store = SqlLogStore(session_factory)
        await store.insert(self._entry(minutes_ago=120))
        await store.insert(self._entry(minutes_ago=60))
        await store.insert(self._entry(minutes_ago=0))

        deleted = await store.delete_older_than(NOW - timedelta(minutes=60))

        assert deleted == 1
        assert len(await store.query(ApiLogFilter())) == 2
