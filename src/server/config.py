"""Configuration management for the FastAPI server.

This module handles configuration loading from environment variables,
providing sensible defaults for development against the HMRC sandbox.
HMRC OAuth credentials are read separately by ``HmrcOAuthConfig.from_env``.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application configuration settings.

    Attributes:
        app_name: Application name
        version: Application version
        debug: Debug mode flag
        database_path: SQLite database file
        environment: "sandbox" or "production"
        app_url: Front-end URL the OAuth callback redirects back to
        vendor_product_name: Gov-Vendor-Product-Name value
        vendor_product_version: Version reported in Gov-Vendor-Version
        vendor_public_ip: Public IP of this server for Gov-Vendor-Public-IP
        vendor_license_ids: Gov-Vendor-License-IDs value
        trust_forwarded_for: Read client IPs from X-Forwarded-For
        trusted_proxy_hops: Trusted proxies in front of the server appending to X-Forwarded-For
        http_timeout: Per-attempt HMRC HTTP timeout in seconds
        request_timeout: Overall timeout for one route operation in seconds
        max_retries: Retries for rate-limited or unavailable responses
        retry_delay: Base backoff delay in seconds
        log_retention_days: Default retention for the API log
        cors_origins: List of allowed CORS origins
        host: Server host address
        port: Server port number
    """

    app_name: str = "HMRC MTD API"
    version: str = "1.0.0"
    debug: bool = False

    # Database configuration
    database_path: str = "~/.mtd_client/mtd.db"

    # HMRC environment
    environment: str = "sandbox"
    app_url: str = "http://localhost:3000"

    # Fraud prevention vendor values
    vendor_product_name: str = "mtd-client"
    vendor_product_version: str = "1.0.0"
    vendor_public_ip: Optional[str] = None
    vendor_license_ids: Optional[str] = None
    trust_forwarded_for: bool = False
    trusted_proxy_hops: int = 1

    # Outbound call behaviour
    http_timeout: float = 20.0
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_delay: float = 1.0

    log_retention_days: int = 30

    # CORS configuration - allow local development origins
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]

    # Server configuration
    host: str = "0.0.0.0"
    port: int = 8000

    class Config:
        """Pydantic configuration."""
        env_prefix = "MTD_"
        case_sensitive = False

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def database_url(self) -> str:
        """Get SQLAlchemy database URL.

        Returns:
            Database URL string for SQLAlchemy
        """
        expanded_path = os.path.expanduser(self.database_path)
        return f"sqlite:///{expanded_path}"

    def get_database_path(self) -> Path:
        """Get expanded database path as Path object.

        Returns:
            Resolved database file path
        """
        return Path(os.path.expanduser(self.database_path))


# Global settings instance
settings = Settings()
