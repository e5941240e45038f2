"""Tests for the HMRC token, auth state and API log repositories."""

from datetime import datetime, timedelta

from src.server.database.models.api_log import HmrcApiLog
from src.server.repositories import (
    ApiLogRepository,
    AuthStateRepository,
    HmrcTokenRepository,
)

NOW = datetime(2025, 9, 21, 14, 30, 5)


def _upsert(repo, access="access-1", refresh="refresh-1", updated_at=NOW, created_at=None):
    return repo.upsert(
        user_id="user-1",
        access_token=access,
        refresh_token=refresh,
        expires_at=updated_at + timedelta(hours=4),
        token_type="bearer",
        scope="read:self-assessment",
        updated_at=updated_at,
        created_at=created_at,
    )


class TestHmrcTokenRepository:
    """Tests for per-user token rows."""

    def test_upsert_creates_row(self, test_db):
        repo = HmrcTokenRepository(test_db)
        token = _upsert(repo)

        assert token.id is not None
        assert token.access_token == "access-1"
        assert token.created_at == NOW
        assert repo.get_by_user("user-1").refresh_token == "refresh-1"

    def test_upsert_replaces_in_place(self, test_db):
        """A second upsert keeps one row and the original created_at."""
        repo = HmrcTokenRepository(test_db)
        first = _upsert(repo)
        later = NOW + timedelta(hours=3)

        second = _upsert(repo, access="access-2", refresh="refresh-2", updated_at=later, created_at=later)

        assert second.id == first.id
        assert second.access_token == "access-2"
        assert second.created_at == NOW
        assert second.updated_at == later

    def test_delete_by_user(self, test_db):
        repo = HmrcTokenRepository(test_db)
        _upsert(repo)

        assert repo.delete_by_user("user-1") is True
        assert repo.get_by_user("user-1") is None
        assert repo.delete_by_user("user-1") is False


class TestAuthStateRepository:
    def test_consume_once(self, test_db):
        repo = AuthStateRepository(test_db)
        repo.create("state-1", "user-1", NOW, NOW + timedelta(minutes=10))

        row = repo.consume("state-1")

        assert row.user_id == "user-1"
        assert row.expires_at == NOW + timedelta(minutes=10)
        assert repo.consume("state-1") is None

    def test_consume_unknown(self, test_db):
        assert AuthStateRepository(test_db).consume("nope") is None

    def test_delete_expired(self, test_db):
        repo = AuthStateRepository(test_db)
        repo.create("old", "user-1", NOW - timedelta(minutes=20), NOW - timedelta(minutes=10))
        repo.create("live", "user-1", NOW, NOW + timedelta(minutes=10))

        assert repo.delete_expired(NOW) == 1
        assert repo.consume("old") is None
        assert repo.consume("live") is not None


class TestApiLogRepository:
    """Tests for the audit log table."""

    def _log(self, repo, minutes_ago=0, status=200, user_id="user-1", endpoint="/obligations", error_code=None):
        return repo.create(
            user_id=user_id,
            timestamp=NOW - timedelta(minutes=minutes_ago),
            method="GET",
            endpoint=endpoint,
            response_status=status,
            error_code=error_code,
            duration_ms=12,
        )

    def test_list_newest_first(self, test_db):
        repo = ApiLogRepository(test_db)
        self._log(repo, minutes_ago=10)
        self._log(repo, minutes_ago=5)
        self._log(repo, minutes_ago=20)

        rows = repo.list_logs()

        assert [row.timestamp for row in rows] == [
            NOW - timedelta(minutes=5),
            NOW - timedelta(minutes=10),
            NOW - timedelta(minutes=20),
        ]

    def test_filters(self, test_db):
        repo = ApiLogRepository(test_db)
        self._log(repo, status=200)
        self._log(repo, status=404, error_code="MATCHING_RESOURCE_NOT_FOUND")
        self._log(repo, status=0, error_code="NETWORK_ERROR")
        self._log(repo, status=200, endpoint="/individuals/business/details/AA******A/list")
        self._log(repo, status=200, user_id="user-2")

        assert len(repo.list_logs(user_id="user-1")) == 4
        assert len(repo.list_logs(user_id="user-1", status="error")) == 2
        assert len(repo.list_logs(user_id="user-1", status="success")) == 2
        assert len(repo.list_logs(endpoint="BUSINESS/details")) == 1
        assert len(repo.list_logs(limit=2)) == 2

    def test_date_range(self, test_db):
        repo = ApiLogRepository(test_db)
        self._log(repo, minutes_ago=60)
        self._log(repo, minutes_ago=30)
        self._log(repo, minutes_ago=0)

        rows = repo.list_logs(
            start_date=NOW - timedelta(minutes=30),
            end_date=NOW - timedelta(minutes=1),
        )

        assert len(rows) == 1

    def test_count_errors_groups_every_row(self, test_db):
        repo = ApiLogRepository(test_db)
        test_db.add_all(
            HmrcApiLog(
                user_id="user-1",
                timestamp=NOW - timedelta(seconds=i),
                method="GET",
                endpoint="/obligations",
                response_status=503,
                error_code="SERVER_ERROR" if i % 3 else None,
                duration_ms=12,
            )
            for i in range(1200)
        )
        test_db.commit()
        self._log(repo, status=0, error_code="NETWORK_ERROR")
        self._log(repo, status=200)
        self._log(repo, status=400, error_code="FORMAT_NINO", minutes_ago=120)
        self._log(repo, status=500, user_id="user-2")

        rows = repo.count_errors("user-1", NOW - timedelta(minutes=60))

        assert sorted(rows, key=lambda row: (row[0] or "", row[1])) == [
            (None, 503, 400),
            ("NETWORK_ERROR", 0, 1),
            ("SERVER_ERROR", 503, 800),
        ]

    def test_delete_older_than_keeps_boundary(self, test_db):
        repo = ApiLogRepository(test_db)
        self._log(repo, minutes_ago=61)
        self._log(repo, minutes_ago=60)
        self._log(repo, minutes_ago=0)

        deleted = repo.delete_older_than(NOW - timedelta(minutes=60))

        assert deleted == 1
        assert len(repo.list_logs()) == 2
