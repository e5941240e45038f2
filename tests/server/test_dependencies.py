"""Tests for MTD container wiring."""

import httpx
import pytest
from fastapi.testclient import TestClient

from src.oauth.config import PRODUCTION_BASE_URL, HmrcOAuthConfig
from src.oauth.exceptions import ConfigurationError
from src.server.config import Settings
from src.server.dependencies import build_container
from src.server.main import create_app


def _oauth_config(base_url):
    return HmrcOAuthConfig(client_id="test_client_id", client_secret="test_client_secret", base_url=base_url)


def test_sandbox_follows_base_url(container):
    assert container.is_sandbox is True
    assert container.service.sandbox is True


def test_production_base_url_disables_sandbox(session_factory):
    """A production base URL never sends Gov-Test-Scenario and sets a secure state cookie."""
    container = build_container(
        Settings(environment="production", vendor_public_ip="203.0.113.10"),
        oauth_config=_oauth_config(PRODUCTION_BASE_URL),
        http_client=httpx.AsyncClient(),
        session_factory=session_factory,
    )

    assert container.is_sandbox is False
    assert container.service.sandbox is False

    with TestClient(create_app(container), headers={"X-User-Id": "user-1"}) as client:
        response = client.get("/api/v1/mtd/auth/authorize", follow_redirects=False)

    assert response.headers["location"].startswith(f"{PRODUCTION_BASE_URL}/oauth/authorize?")
    assert "secure" in response.headers["set-cookie"].lower()


def test_environment_mismatch_rejected(session_factory):
    """A production base URL with the default sandbox environment refuses to start."""
    with pytest.raises(ConfigurationError, match="does not match"):
        build_container(
            Settings(),
            oauth_config=_oauth_config(PRODUCTION_BASE_URL),
            http_client=httpx.AsyncClient(),
            session_factory=session_factory,
        )


def test_sandbox_base_url_with_production_environment_rejected(session_factory):
    with pytest.raises(ConfigurationError):
        build_container(
            Settings(environment="production"),
            oauth_config=_oauth_config("https://test-api.service.hmrc.gov.uk"),
            http_client=httpx.AsyncClient(),
            session_factory=session_factory,
        )
