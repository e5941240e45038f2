"""
OAuth configuration for HMRC Making Tax Digital integration.

This module provides configuration management for OAuth 2.0 authentication
with HMRC's APIs. Configuration can be loaded from environment variables or
provided programmatically. The upstream base URL is always a parameter so the
same code talks to the sandbox or to production.
"""

import os
from dataclasses import dataclass, field
from typing import List

from .exceptions import ConfigurationError

SANDBOX_BASE_URL = "https://test-api.service.hmrc.gov.uk"
PRODUCTION_BASE_URL = "https://api.service.hmrc.gov.uk"

DEFAULT_SCOPES = ("read:self-assessment", "write:self-assessment")


@dataclass
class HmrcOAuthConfig:
    """
    Configuration for HMRC OAuth 2.0.

    Attributes:
        client_id: Application client ID from the HMRC Developer Hub
        client_secret: Application client secret from the HMRC Developer Hub
        redirect_uri: Registered redirect URI for the authorization callback
        base_url: API base URL (sandbox or production)
        scopes: OAuth scopes requested during authorization
        refresh_skew_seconds: Refresh tokens this many seconds before expiry
        state_ttl_seconds: Lifetime of an authorization state value
        timeout_seconds: Timeout for calls to the token endpoint
    """

    # Required - from HMRC Developer Hub
    client_id: str
    client_secret: str

    redirect_uri: str = "http://localhost:8000/api/v1/mtd/auth/callback"
    base_url: str = SANDBOX_BASE_URL
    scopes: List[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))

    # Token refresh settings
    refresh_skew_seconds: int = 60

    # CSRF state lifetime (10 minutes)
    state_ttl_seconds: int = 600

    timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.client_id:
            raise ConfigurationError("client_id cannot be empty")

        if not self.client_secret:
            raise ConfigurationError("client_secret cannot be empty")

        if not self.base_url.startswith(("https://", "http://")):
            raise ConfigurationError(f"base_url must be an http(s) URL, got {self.base_url!r}")

        if not self.redirect_uri:
            raise ConfigurationError("redirect_uri cannot be empty")

        if self.refresh_skew_seconds < 0:
            raise ConfigurationError("refresh_skew_seconds cannot be negative")

        if self.state_ttl_seconds <= 0:
            raise ConfigurationError("state_ttl_seconds must be positive")

        self.base_url = self.base_url.rstrip("/")

    @property
    def authorization_url(self) -> str:
        """HMRC OAuth authorization endpoint."""
        return f"{self.base_url}/oauth/authorize"

    @property
    def token_url(self) -> str:
        """HMRC OAuth token endpoint."""
        return f"{self.base_url}/oauth/token"

    @property
    def is_sandbox(self) -> bool:
        """Whether this configuration points at the HMRC sandbox."""
        return "test-api" in self.base_url

    @classmethod
    def from_env(cls) -> "HmrcOAuthConfig":
        """
        Load configuration from environment variables.

        Required environment variables:
            HMRC_CLIENT_ID: HMRC application client ID
            HMRC_CLIENT_SECRET: HMRC application client secret

        Optional environment variables:
            HMRC_REDIRECT_URI: OAuth callback URL
            HMRC_API_BASE_URL: API base URL (default: sandbox)
            HMRC_REFRESH_SKEW_SECONDS: Refresh margin in seconds (default: 60)

        Returns:
            HmrcOAuthConfig instance

        Raises:
            ConfigurationError: If required environment variables are missing
        """
        client_id = os.environ.get("HMRC_CLIENT_ID")
        client_secret = os.environ.get("HMRC_CLIENT_SECRET")

        if not client_id or not client_secret:
            raise ConfigurationError(
                "Missing HMRC OAuth credentials. Set environment variables:\n"
                "  HMRC_CLIENT_ID=your_client_id\n"
                "  HMRC_CLIENT_SECRET=your_client_secret\n"
                "\n"
                "Get credentials from: https://developer.service.hmrc.gov.uk"
            )

        try:
            skew = int(os.environ.get("HMRC_REFRESH_SKEW_SECONDS", "60"))
        except ValueError as e:
            raise ConfigurationError(f"HMRC_REFRESH_SKEW_SECONDS must be an integer: {e}") from e

        return cls(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=os.environ.get(
                "HMRC_REDIRECT_URI", "http://localhost:8000/api/v1/mtd/auth/callback"
            ),
            base_url=os.environ.get("HMRC_API_BASE_URL", SANDBOX_BASE_URL),
            refresh_skew_seconds=skew,
        )
