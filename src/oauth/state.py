"""
Authorization flow with CSRF state protection.

The authorize step generates a random opaque ``state``, persists it bound to
the initiating user with a short TTL, and hands back the HMRC redirect URL.
The callback step consumes the persisted state (store-and-delete, so a state
value validates at most once) and only then exchanges the code for tokens.
Any mismatch, expiry or missing value fails closed before the token
endpoint is contacted.
"""

import asyncio
import hmac
import logging
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Protocol, Tuple

from src.utils.date_utils import ensure_utc, utc_now

from .client import HmrcOAuthClient
from .exceptions import AuthorizationError, InvalidStateError
from .token_storage import OAuthTokenRecord, TokenStore

logger = logging.getLogger(__name__)

# 32 random bytes = 256 bits of entropy
STATE_NBYTES = 32


@dataclass
class AuthorizationState:
    """Ephemeral CSRF value bound to the user who started the flow."""

    state: str
    user_id: str
    created_at: datetime
    expires_at: datetime

    def __post_init__(self) -> None:
        self.created_at = ensure_utc(self.created_at)
        self.expires_at = ensure_utc(self.expires_at)

    def is_expired(self, now: datetime) -> bool:
        return ensure_utc(now) >= self.expires_at


class AuthStateStore(Protocol):
    """Persistence for pending authorization states."""

    async def save(self, state: AuthorizationState) -> None:
        ...

    async def consume(self, state: str) -> Optional[AuthorizationState]:
        """Atomically fetch and delete a state. Returns None if unknown."""
        ...


class InMemoryAuthStateStore:
    """Dictionary-backed authorization state store."""

    def __init__(self) -> None:
        self._states: Dict[str, AuthorizationState] = {}
        self._lock = asyncio.Lock()

    async def save(self, state: AuthorizationState) -> None:
        async with self._lock:
            self._states[state.state] = replace(state)

    async def consume(self, state: str) -> Optional[AuthorizationState]:
        async with self._lock:
            return self._states.pop(state, None)


def generate_state() -> str:
    """Generate a URL-safe random state value."""
    return secrets.token_urlsafe(STATE_NBYTES)


class AuthorizationFlow:
    """
    Runs the two halves of the OAuth authorization code flow.

    Example:
        url, state = await flow.begin(user_id)
        # redirect the browser to ``url``, remember ``state`` in a cookie
        record = await flow.complete(state_param, code, cookie_state)
    """

    def __init__(
        self,
        oauth_client: HmrcOAuthClient,
        state_store: AuthStateStore,
        token_store: TokenStore,
        ttl_seconds: int = 600,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.oauth_client = oauth_client
        self.state_store = state_store
        self.token_store = token_store
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    async def begin(self, user_id: str) -> Tuple[str, str]:
        """
        Start authorization for a user.

        Args:
            user_id: User initiating the connection

        Returns:
            Tuple of (authorization URL, state value)
        """
        now = self.clock()
        state = AuthorizationState(
            state=generate_state(),
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        await self.state_store.save(state)
        logger.info(f"Started HMRC authorization for user {user_id}")
        return self.oauth_client.get_authorization_url(state.state), state.state

    async def complete(
        self,
        state: Optional[str],
        code: Optional[str],
        cookie_state: Optional[str],
        user_id: Optional[str] = None,
    ) -> OAuthTokenRecord:
        """
        Finish authorization: validate state, exchange the code, store tokens.

        Args:
            state: ``state`` query parameter from the callback
            code: ``code`` query parameter from the callback
            cookie_state: State value from the CSRF cookie
            user_id: Authenticated caller, if known; must match the state's user

        Returns:
            The stored OAuthTokenRecord

        Raises:
            InvalidStateError: On missing, unknown, expired or mismatched state
            AuthExchangeError: If HMRC refuses the code
        """
        if not state:
            raise InvalidStateError("Missing state parameter")

        # Consume first so a state value is single-use even when validation fails
        stored = await self.state_store.consume(state)

        if stored is None:
            logger.warning("Authorization callback with unknown or already used state")
            raise InvalidStateError("Unknown or already used state")

        if not cookie_state or not hmac.compare_digest(cookie_state, state):
            logger.warning(f"Authorization state does not match cookie for user {stored.user_id}")
            raise InvalidStateError("State does not match")

        if stored.is_expired(self.clock()):
            logger.warning(f"Authorization state expired for user {stored.user_id}")
            raise InvalidStateError("State expired")

        if user_id is not None and user_id != stored.user_id:
            logger.warning("Authorization callback user does not match state owner")
            raise InvalidStateError("State was issued to a different user")

        if not code:
            raise AuthorizationError("Missing authorization code")

        record = await self.oauth_client.exchange_code_for_tokens(code, stored.user_id)
        await self.token_store.upsert(record)
        logger.info(f"HMRC connected for user {stored.user_id}")
        return record
