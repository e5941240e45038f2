"""SQLAlchemy-backed implementations of the async store protocols.

Each operation opens its own session and runs the synchronous repository
call in a worker thread, so concurrent requests never share a session and
the event loop is never blocked on SQLite.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.hmrc.api_logger import ApiLogEntry, ApiLogFilter, error_bucket
from src.oauth.exceptions import TokenStorageError
from src.oauth.state import AuthorizationState
from src.oauth.token_storage import OAuthTokenRecord
from src.server.database.models.api_log import HmrcApiLog
from src.server.database.models.hmrc_token import HmrcToken
from src.server.repositories.api_log import ApiLogRepository
from src.server.repositories.auth_state import AuthStateRepository
from src.server.repositories.hmrc_token import HmrcTokenRepository
from src.utils.date_utils import ensure_utc, to_naive_utc, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _SqlStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def _run(self, func: Callable[[Session], T]) -> T:
        def call() -> T:
            db = self.session_factory()
            try:
                return func(db)
            except SQLAlchemyError:
                db.rollback()
                raise
            finally:
                db.close()

        return await asyncio.to_thread(call)


def _token_to_record(row: HmrcToken) -> OAuthTokenRecord:
    return OAuthTokenRecord(
        user_id=row.user_id,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        expires_at=ensure_utc(row.expires_at),
        token_type=row.token_type,
        scope=row.scope or "",
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def _log_to_entry(row: HmrcApiLog) -> ApiLogEntry:
    return ApiLogEntry(
        id=row.id,
        user_id=row.user_id,
        timestamp=ensure_utc(row.timestamp),
        method=row.method,
        endpoint=row.endpoint,
        request_body=row.request_body,
        response_status=row.response_status,
        response_body=row.response_body,
        error_code=row.error_code,
        error_message=row.error_message,
        duration_ms=row.duration_ms,
        correlation_id=row.correlation_id,
        gov_test_scenario=row.gov_test_scenario,
    )


class SqlTokenStore(_SqlStore):
    """Token store over the ``hmrc_tokens`` table."""

    async def get(self, user_id: str) -> Optional[OAuthTokenRecord]:
        def op(db: Session) -> Optional[OAuthTokenRecord]:
            row = HmrcTokenRepository(db).get_by_user(user_id)
            return _token_to_record(row) if row else None

        try:
            return await self._run(op)
        except SQLAlchemyError as e:
            raise TokenStorageError(f"Failed to load tokens for user {user_id}: {e}") from e

    async def upsert(self, record: OAuthTokenRecord) -> None:
        def op(db: Session) -> None:
            HmrcTokenRepository(db).upsert(
                user_id=record.user_id,
                access_token=record.access_token,
                refresh_token=record.refresh_token,
                expires_at=to_naive_utc(record.expires_at),
                token_type=record.token_type,
                scope=record.scope,
                updated_at=to_naive_utc(record.updated_at),
                created_at=to_naive_utc(record.created_at),
            )

        try:
            await self._run(op)
        except SQLAlchemyError as e:
            raise TokenStorageError(f"Failed to store tokens for user {record.user_id}: {e}") from e

    async def delete(self, user_id: str) -> None:
        try:
            await self._run(lambda db: HmrcTokenRepository(db).delete_by_user(user_id))
        except SQLAlchemyError as e:
            raise TokenStorageError(f"Failed to delete tokens for user {user_id}: {e}") from e


class SqlLogStore(_SqlStore):
    """Log store over the ``hmrc_api_logs`` table."""

    async def insert(self, entry: ApiLogEntry) -> None:
        await self._run(
            lambda db: ApiLogRepository(db).create(
                user_id=entry.user_id,
                timestamp=to_naive_utc(entry.timestamp),
                method=entry.method,
                endpoint=entry.endpoint,
                request_body=entry.request_body,
                response_status=entry.response_status,
                response_body=entry.response_body,
                error_code=entry.error_code,
                error_message=entry.error_message,
                duration_ms=entry.duration_ms,
                correlation_id=entry.correlation_id,
                gov_test_scenario=entry.gov_test_scenario,
            )
        )

    async def query(self, log_filter: ApiLogFilter) -> List[ApiLogEntry]:
        def op(db: Session) -> List[ApiLogEntry]:
            rows = ApiLogRepository(db).list_logs(
                user_id=log_filter.user_id,
                endpoint=log_filter.endpoint,
                status=log_filter.status,
                start_date=to_naive_utc(log_filter.start_date) if log_filter.start_date else None,
                end_date=to_naive_utc(log_filter.end_date) if log_filter.end_date else None,
                limit=log_filter.limit,
            )
            return [_log_to_entry(row) for row in rows]

        return await self._run(op)

    async def delete_older_than(self, cutoff: datetime) -> int:
        return await self._run(lambda db: ApiLogRepository(db).delete_older_than(to_naive_utc(cutoff)))

    async def count_errors(self, user_id: str, start_date: datetime) -> Dict[str, int]:
        rows = await self._run(
            lambda db: ApiLogRepository(db).count_errors(user_id, to_naive_utc(start_date))
        )
        counts: Dict[str, int] = {}
        for code, status, count in rows:
            key = error_bucket(code, status)
            counts[key] = counts.get(key, 0) + count
        return counts


class SqlAuthStateStore(_SqlStore):
    """Authorization state store over the ``mtd_auth_states`` table."""

    async def save(self, state: AuthorizationState) -> None:
        def op(db: Session) -> None:
            repo = AuthStateRepository(db)
            repo.delete_expired(to_naive_utc(utc_now()))
            repo.create(
                state=state.state,
                user_id=state.user_id,
                created_at=to_naive_utc(state.created_at),
                expires_at=to_naive_utc(state.expires_at),
            )

        await self._run(op)

    async def consume(self, state: str) -> Optional[AuthorizationState]:
        def op(db: Session) -> Optional[AuthorizationState]:
            row = AuthStateRepository(db).consume(state)
            if row is None:
                return None
            return AuthorizationState(
                state=row.state,
                user_id=row.user_id,
                created_at=row.created_at,
                expires_at=row.expires_at,
            )

        return await self._run(op)
