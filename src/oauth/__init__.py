"""
OAuth 2.0 module for HMRC Making Tax Digital integration.

This module implements the OAuth 2.0 Authorization Code flow against HMRC's
token endpoint and keeps every user's access token fresh for API calls.

Public API:
    HmrcOAuthConfig: OAuth configuration management
    HmrcOAuthClient: Authorization URL, code exchange and refresh grant
    AuthorizationFlow: CSRF-protected authorize/callback flow
    OAuthTokenRecord: Per-user token record
    TokenStore / InMemoryTokenStore: Token persistence
    TokenRefreshCoordinator: Proactive, single-flight token refresh

Exceptions:
    HmrcOAuthError: Base exception
    ConfigurationError: Configuration error
    AuthorizationError: Authorization flow error
    InvalidStateError: CSRF state check failed
    AuthExchangeError: Token endpoint refused the grant
    TokenRefreshError: Transient refresh failure
    RefreshInvalidError: Refresh token rejected
    SessionExpiredError: No usable session, re-authorize
    TokenStorageError: Storage operation failed
"""

from .client import HmrcOAuthClient
from .config import PRODUCTION_BASE_URL, SANDBOX_BASE_URL, HmrcOAuthConfig
from .coordinator import ConnectionStatus, TokenRefreshCoordinator
from .exceptions import (
    AuthExchangeError,
    AuthorizationError,
    ConfigurationError,
    HmrcOAuthError,
    InvalidStateError,
    RefreshInvalidError,
    SessionExpiredError,
    TokenRefreshError,
    TokenStorageError,
)
from .state import AuthorizationFlow, AuthorizationState, AuthStateStore, InMemoryAuthStateStore
from .token_storage import InMemoryTokenStore, OAuthTokenRecord, TokenStore

__all__ = [
    "AuthExchangeError",
    "AuthStateStore",
    "AuthorizationError",
    "AuthorizationFlow",
    "AuthorizationState",
    "ConfigurationError",
    "ConnectionStatus",
    "HmrcOAuthClient",
    "HmrcOAuthConfig",
    "HmrcOAuthError",
    "InMemoryAuthStateStore",
    "InMemoryTokenStore",
    "InvalidStateError",
    "OAuthTokenRecord",
    "PRODUCTION_BASE_URL",
    "RefreshInvalidError",
    "SANDBOX_BASE_URL",
    "SessionExpiredError",
    "TokenRefreshCoordinator",
    "TokenRefreshError",
    "TokenStorageError",
    "TokenStore",
]
