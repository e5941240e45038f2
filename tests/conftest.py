"""Shared fixtures for OAuth and HMRC tests."""

from datetime import datetime, timezone

import httpx
import pytest

from src.oauth.client import HmrcOAuthClient
from src.oauth.config import HmrcOAuthConfig
from src.oauth.token_storage import InMemoryTokenStore
from tests.helpers import FrozenClock


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2025, 9, 21, 14, 30, 5, 123456, tzinfo=timezone.utc))


@pytest.fixture
def oauth_config():
    return HmrcOAuthConfig(client_id="test_client_id", client_secret="test_client_secret")


@pytest.fixture
def http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient()


@pytest.fixture
def oauth_client(oauth_config, http_client, clock) -> HmrcOAuthClient:
    return HmrcOAuthClient(oauth_config, http_client, clock=clock)


@pytest.fixture
def token_store() -> InMemoryTokenStore:
    return InMemoryTokenStore()
