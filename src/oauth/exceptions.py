"""
OAuth exception classes for HMRC integration.

This module defines the exception hierarchy for all OAuth-related errors,
providing clear error messages and recovery guidance.
"""

from typing import Optional


class HmrcOAuthError(Exception):
    """Base exception for all HMRC OAuth errors."""

    pass


class ConfigurationError(HmrcOAuthError):
    """OAuth configuration error (missing or invalid configuration)."""

    pass


class AuthorizationError(HmrcOAuthError):
    """OAuth authorization flow error (user denied access, missing code)."""

    pass


class InvalidStateError(AuthorizationError):
    """
    Authorization state did not validate.

    Raised when the ``state`` returned to the callback is missing, unknown,
    expired, already consumed, or does not match the CSRF cookie. No token
    exchange is attempted once this is raised.
    """

    pass


class AuthExchangeError(HmrcOAuthError):
    """Failed to exchange authorization code for tokens."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        description: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.error_code = error_code
        self.description = description
        self.status_code = status_code
        super().__init__(message)


class TokenRefreshError(HmrcOAuthError):
    """
    Refresh failed for a transient reason (network error, upstream 5xx).

    The stored refresh token is still usable; the caller may try again later.
    """

    pass


class RefreshInvalidError(AuthExchangeError):
    """
    HMRC rejected the refresh token (expired, revoked or already used).

    Retrying with the same refresh token can never succeed; the user has to
    go through the authorization flow again.
    """

    pass


class SessionExpiredError(HmrcOAuthError):
    """
    No usable HMRC session for this user.

    Raised when there is no stored token or the refresh token is no longer
    accepted. Route handlers send the user to re-authorize rather than retry.
    """

    def __init__(self, message: str, user_id: Optional[str] = None):
        self.user_id = user_id
        super().__init__(message)


class TokenStorageError(HmrcOAuthError):
    """Token storage operation failed."""

    pass
