"""
Token refresh coordination for HMRC API calls.

This module is the single place that decides whether a user's access token
is still good enough to use. It refreshes proactively inside a configurable
margin before expiry and collapses concurrent refreshes for the same user
into one in-flight operation, because HMRC rotates refresh tokens and
rejects an already-used one.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from src.utils.date_utils import utc_now

from .client import HmrcOAuthClient
from .exceptions import RefreshInvalidError, SessionExpiredError
from .token_storage import OAuthTokenRecord, TokenStore

logger = logging.getLogger(__name__)


@dataclass
class ConnectionStatus:
    """HMRC connection state for one user."""

    status: str  # "connected", "expired" or "disconnected"
    connected_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    needs_reauth: bool = False

    @property
    def is_connected(self) -> bool:
        return self.status == "connected"


class TokenRefreshCoordinator:
    """
    Hands out valid access tokens, refreshing when needed.

    Example:
        coordinator = TokenRefreshCoordinator(token_store, oauth_client)
        access_token = await coordinator.ensure_fresh_token(user_id)
    """

    def __init__(
        self,
        token_store: TokenStore,
        oauth_client: HmrcOAuthClient,
        skew_seconds: int = 60,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the coordinator.

        Args:
            token_store: Per-user token persistence
            oauth_client: Client used for the refresh grant
            skew_seconds: Refresh when the token expires within this margin
            clock: Returns the current UTC time (overridable in tests)
        """
        self.token_store = token_store
        self.oauth_client = oauth_client
        self.skew_seconds = skew_seconds
        self.clock = clock
        self._in_flight: Dict[str, asyncio.Task] = {}

    def needs_refresh(self, record: OAuthTokenRecord, now: Optional[datetime] = None) -> bool:
        """
        Check whether a token is inside the refresh margin.

        Returns:
            True when ``now >= expires_at - skew``
        """
        return record.expires_within(self.skew_seconds, now or self.clock())

    async def ensure_fresh_token(self, user_id: str) -> str:
        """
        Get a valid access token for a user, refreshing if necessary.

        Args:
            user_id: Owner of the tokens

        Returns:
            Access token string

        Raises:
            SessionExpiredError: No stored token, or the refresh token was rejected
            TokenRefreshError: Refresh failed for a transient reason
        """
        record = await self.token_store.get(user_id)
        if record is None:
            raise SessionExpiredError("Not connected to HMRC", user_id=user_id)

        if not self.needs_refresh(record):
            return record.access_token

        logger.info(
            f"Token for user {user_id} expires at {record.expires_at.isoformat()}, refreshing"
        )
        return await self._single_flight(user_id, stale_access_token=None)

    async def force_refresh(self, user_id: str, stale_access_token: str) -> str:
        """
        Refresh after HMRC rejected an access token.

        If another caller already replaced ``stale_access_token`` the newer
        token is returned without a second refresh.

        Raises:
            SessionExpiredError: No stored token, or the refresh token was rejected
            TokenRefreshError: Refresh failed for a transient reason
        """
        logger.info(f"Access token rejected for user {user_id}, forcing refresh")
        return await self._single_flight(user_id, stale_access_token=stale_access_token)

    async def get_connection_status(self, user_id: str) -> ConnectionStatus:
        """Report whether the user has a usable HMRC connection."""
        record = await self.token_store.get(user_id)
        if record is None:
            return ConnectionStatus(status="disconnected")

        expired = record.is_expired(self.clock())
        return ConnectionStatus(
            status="expired" if expired else "connected",
            connected_at=record.created_at,
            expires_at=record.expires_at,
            needs_reauth=expired,
        )

    async def disconnect(self, user_id: str) -> None:
        """Forget a user's tokens. The next call needs a new authorization."""
        await self.token_store.delete(user_id)
        logger.info(f"HMRC disconnected for user {user_id}")

    async def _single_flight(self, user_id: str, stale_access_token: Optional[str]) -> str:
        task = self._in_flight.get(user_id)
        if task is None:
            task = asyncio.ensure_future(self._refresh(user_id, stale_access_token))
            self._in_flight[user_id] = task
            task.add_done_callback(lambda t: self._forget(user_id, t))
        else:
            logger.debug(f"Joining in-flight refresh for user {user_id}")

        # A cancelled waiter must not cancel the refresh other waiters depend on
        return await asyncio.shield(task)

    def _forget(self, user_id: str, task: asyncio.Task) -> None:
        if self._in_flight.get(user_id) is task:
            del self._in_flight[user_id]
        if not task.cancelled():
            # Mark the exception retrieved when every waiter has gone away
            task.exception()

    async def _refresh(self, user_id: str, stale_access_token: Optional[str]) -> str:
        # Re-read: a refresh that finished just before this one may have rotated the pair
        record = await self.token_store.get(user_id)
        if record is None:
            raise SessionExpiredError("Not connected to HMRC", user_id=user_id)

        if stale_access_token is None:
            if not self.needs_refresh(record):
                return record.access_token
        elif record.access_token != stale_access_token and not self.needs_refresh(record):
            return record.access_token

        try:
            refreshed = await self.oauth_client.refresh_token(
                record.refresh_token, user_id, previous=record
            )
        except RefreshInvalidError as e:
            logger.warning(f"Refresh token rejected for user {user_id}; re-authorization required")
            await self.token_store.delete(user_id)
            raise SessionExpiredError(
                "HMRC session expired. Please reconnect.", user_id=user_id
            ) from e

        await self.token_store.upsert(refreshed)
        logger.info(f"Refreshed token for user {user_id}, expires at {refreshed.expires_at.isoformat()}")
        return refreshed.access_token
