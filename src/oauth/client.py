"""
OAuth client for HMRC integration.

This module builds the authorization redirect URL and exchanges
authorization codes and refresh tokens at HMRC's token endpoint.

The client does not persist anything: every successful exchange returns a
fully populated OAuthTokenRecord and storing it is the caller's job.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional
from urllib.parse import urlencode

import httpx

from src.utils.date_utils import utc_now

from .config import HmrcOAuthConfig
from .exceptions import AuthExchangeError, RefreshInvalidError, TokenRefreshError
from .token_storage import OAuthTokenRecord

logger = logging.getLogger(__name__)

# Upstream error codes meaning the refresh token itself is dead
INVALID_REFRESH_ERRORS = {"invalid_grant", "invalid_request", "unauthorized_client"}


class HmrcOAuthClient:
    """
    Talks to HMRC's OAuth 2.0 endpoints.

    Responsibilities:
    - Build the authorization URL (no network call)
    - Exchange authorization codes for tokens
    - Exchange refresh tokens for new tokens
    - Compute absolute expiry from ``expires_in``
    """

    def __init__(
        self,
        config: HmrcOAuthConfig,
        http_client: httpx.AsyncClient,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the OAuth client.

        Args:
            config: OAuth configuration
            http_client: Shared async HTTP client
            clock: Returns the current UTC time (overridable in tests)
        """
        self.config = config
        self.http_client = http_client
        self.clock = clock

    def get_authorization_url(self, state: str, scopes: Optional[List[str]] = None) -> str:
        """
        Build the HMRC authorization URL.

        Args:
            state: Opaque CSRF state value
            scopes: OAuth scopes (defaults to the configured scopes)

        Returns:
            Authorization URL to redirect the user to
        """
        params = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "scope": " ".join(scopes if scopes is not None else self.config.scopes),
            "state": state,
            "redirect_uri": self.config.redirect_uri,
        }
        return f"{self.config.authorization_url}?{urlencode(params)}"

    async def exchange_code_for_tokens(self, code: str, user_id: str) -> OAuthTokenRecord:
        """
        Exchange authorization code for access and refresh tokens.

        Args:
            code: Code received on the OAuth callback
            user_id: User the tokens will belong to

        Returns:
            OAuthTokenRecord with absolute expiry

        Raises:
            AuthExchangeError: If the exchange fails
        """
        logger.info(f"Exchanging authorization code for tokens (user {user_id})")

        try:
            response = await self._post_token_form(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.config.redirect_uri,
                }
            )
        except httpx.HTTPError as e:
            logger.error(f"Network error during token exchange: {e}")
            raise AuthExchangeError(f"Network error during token exchange: {e}") from e

        if response.status_code != 200:
            error_code, description = _parse_oauth_error(response)
            logger.error(f"Token exchange failed: {response.status_code} - {error_code}")
            raise AuthExchangeError(
                f"Token exchange failed with status {response.status_code}",
                error_code=error_code,
                description=description,
                status_code=response.status_code,
            )

        try:
            record = OAuthTokenRecord.from_token_response(
                user_id, response.json(), issued_at=self.clock()
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Invalid response from token endpoint: {e}")
            raise AuthExchangeError(f"Invalid response from token endpoint: {e}") from e

        logger.info(f"Obtained tokens for user {user_id}, expires at {record.expires_at.isoformat()}")
        return record

    async def refresh_token(
        self,
        refresh_token: str,
        user_id: str,
        previous: Optional[OAuthTokenRecord] = None,
    ) -> OAuthTokenRecord:
        """
        Exchange a refresh token for a new token pair.

        Args:
            refresh_token: Current refresh token
            user_id: Owner of the tokens
            previous: Current record, used to carry over fields the response omits

        Returns:
            New OAuthTokenRecord

        Raises:
            RefreshInvalidError: If HMRC rejected the refresh token (re-authorize)
            TokenRefreshError: If the refresh failed for a transient reason
        """
        logger.info(f"Refreshing access token for user {user_id}")

        try:
            response = await self._post_token_form(
                {"grant_type": "refresh_token", "refresh_token": refresh_token}
            )
        except httpx.HTTPError as e:
            logger.warning(f"Network error during token refresh: {e}")
            raise TokenRefreshError(f"Network error during token refresh: {e}") from e

        if response.status_code != 200:
            error_code, description = _parse_oauth_error(response)
            logger.error(f"Token refresh failed: {response.status_code} - {error_code}")

            # 4xx means the grant itself was refused; retrying the same token cannot work
            if 400 <= response.status_code < 500 and (
                error_code in INVALID_REFRESH_ERRORS or response.status_code in (400, 401)
            ):
                raise RefreshInvalidError(
                    "Refresh token was rejected. Please reconnect to HMRC.",
                    error_code=error_code,
                    description=description,
                    status_code=response.status_code,
                )

            raise TokenRefreshError(f"Token refresh failed with status {response.status_code}")

        try:
            return OAuthTokenRecord.from_token_response(
                user_id, response.json(), issued_at=self.clock(), previous=previous
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Invalid response from token endpoint: {e}")
            raise TokenRefreshError(f"Invalid response from token endpoint: {e}") from e

    async def _post_token_form(self, form: dict) -> httpx.Response:
        data = dict(form)
        data["client_id"] = self.config.client_id
        data["client_secret"] = self.config.client_secret
        return await self.http_client.post(
            self.config.token_url,
            data=data,
            headers={"Accept": "application/json"},
            timeout=self.config.timeout_seconds,
        )


def _parse_oauth_error(response: httpx.Response) -> tuple:
    """Pull ``error`` and ``error_description`` out of a token endpoint error body."""
    try:
        body = response.json()
    except ValueError:
        return None, response.text[:200] or None
    if not isinstance(body, dict):
        return None, None
    return body.get("error") or body.get("code"), body.get("error_description") or body.get("message")
