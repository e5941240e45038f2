"""
Token storage for HMRC OAuth integration.

This module defines the per-user token record and the storage protocol the
rest of the application depends on. Expiry is stored as an absolute UTC
instant so that refresh decisions never depend on when a record was read.

The in-memory store is used by tests and single-process deployments; the
SQLAlchemy-backed store lives in ``src.server.stores``.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, Optional, Protocol

from src.utils.date_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class OAuthTokenRecord:
    """
    Stored OAuth token data for one user.

    Attributes:
        user_id: Application user the tokens belong to
        access_token: Short-lived bearer token for API calls
        refresh_token: Long-lived token for obtaining new access tokens
        expires_at: Absolute UTC instant the access token expires
        token_type: Token type (typically "bearer")
        scope: Granted OAuth scopes
        created_at: When the user first connected
        updated_at: When the tokens were last issued or refreshed
    """

    user_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    token_type: str = "bearer"
    scope: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        self.expires_at = ensure_utc(self.expires_at)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    @classmethod
    def from_token_response(
        cls,
        user_id: str,
        data: dict,
        issued_at: Optional[datetime] = None,
        previous: Optional["OAuthTokenRecord"] = None,
    ) -> "OAuthTokenRecord":
        """
        Build a record from a token endpoint response body.

        Args:
            user_id: Owner of the tokens
            data: Parsed JSON from the token endpoint
            issued_at: Issue instant (defaults to now)
            previous: Existing record, used to keep the refresh token and
                      scope when the response omits them

        Returns:
            OAuthTokenRecord with an absolute expiry

        Raises:
            KeyError: If ``access_token`` or ``expires_in`` is missing
            ValueError: If ``expires_in`` is not an integer
        """
        issued = ensure_utc(issued_at) if issued_at else utc_now()
        refresh_token = data.get("refresh_token") or (previous.refresh_token if previous else None)
        if not refresh_token:
            raise KeyError("refresh_token")

        return cls(
            user_id=user_id,
            access_token=data["access_token"],
            refresh_token=refresh_token,
            expires_at=issued + timedelta(seconds=int(data["expires_in"])),
            token_type=data.get("token_type", "bearer"),
            scope=data.get("scope", previous.scope if previous else ""),
            created_at=previous.created_at if previous else issued,
            updated_at=issued,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """
        Check if the access token is expired.

        Returns:
            True if token has expired, False otherwise
        """
        return (ensure_utc(now) if now else utc_now()) >= self.expires_at

    def expires_within(self, seconds: int, now: Optional[datetime] = None) -> bool:
        """
        Check if the token expires within given seconds.

        Args:
            seconds: Number of seconds to check
            now: Reference instant (defaults to the current time)

        Returns:
            True if token will expire within the specified time, False otherwise
        """
        reference = ensure_utc(now) if now else utc_now()
        return reference >= self.expires_at - timedelta(seconds=seconds)


class TokenStore(Protocol):
    """Per-user token persistence. At most one record exists per user."""

    async def get(self, user_id: str) -> Optional[OAuthTokenRecord]:
        ...

    async def upsert(self, record: OAuthTokenRecord) -> None:
        ...

    async def delete(self, user_id: str) -> None:
        ...


class InMemoryTokenStore:
    """
    Dictionary-backed token store.

    Records are copied on the way in and out so callers never share a
    mutable record with the store.
    """

    def __init__(self) -> None:
        self._records: Dict[str, OAuthTokenRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> Optional[OAuthTokenRecord]:
        async with self._lock:
            record = self._records.get(user_id)
            return replace(record) if record else None

    async def upsert(self, record: OAuthTokenRecord) -> None:
        async with self._lock:
            existing = self._records.get(record.user_id)
            stored = replace(record)
            if existing:
                stored.created_at = existing.created_at
            self._records[record.user_id] = stored
        logger.debug(f"Stored tokens for user {record.user_id}")

    async def delete(self, user_id: str) -> None:
        async with self._lock:
            self._records.pop(user_id, None)
        logger.debug(f"Deleted tokens for user {user_id}")
