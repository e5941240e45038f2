"""Tests for the HMRC OAuth client."""

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from pytest_httpx import HTTPXMock

from src.oauth.exceptions import AuthExchangeError, RefreshInvalidError, TokenRefreshError
from tests.helpers import TOKEN_URL, make_record, token_response


def _form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TestAuthorizationUrl:
    """Tests for get_authorization_url."""

    def test_url_carries_flow_parameters(self, oauth_client, oauth_config):
        """The URL includes client id, scopes, state and redirect URI."""
        url = oauth_client.get_authorization_url("state-123")

        parsed = urlparse(url)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == oauth_config.authorization_url
        assert params["response_type"] == "code"
        assert params["client_id"] == "test_client_id"
        assert params["scope"] == "read:self-assessment write:self-assessment"
        assert params["state"] == "state-123"
        assert params["redirect_uri"] == oauth_config.redirect_uri

    def test_custom_scopes(self, oauth_client):
        url = oauth_client.get_authorization_url("s", scopes=["read:self-assessment"])

        assert parse_qs(urlparse(url).query)["scope"] == ["read:self-assessment"]


class TestExchangeCode:
    """Tests for exchange_code_for_tokens."""

    @pytest.mark.asyncio
    async def test_exchange_success(self, oauth_client, clock, httpx_mock: HTTPXMock):
        """A 200 response becomes a record with absolute expiry."""
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json=token_response())

        record = await oauth_client.exchange_code_for_tokens("auth-code", "user-1")

        assert record.user_id == "user-1"
        assert record.access_token == "access-new"
        assert record.refresh_token == "refresh-new"
        assert record.expires_at == clock() + timedelta(seconds=14400)

        form = _form(httpx_mock.get_request())
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "auth-code"
        assert form["client_id"] == "test_client_id"
        assert form["client_secret"] == "test_client_secret"
        assert form["redirect_uri"] == "http://localhost:8000/api/v1/mtd/auth/callback"

    @pytest.mark.asyncio
    async def test_exchange_rejected(self, oauth_client, httpx_mock: HTTPXMock):
        """A non-200 response raises with the OAuth error code."""
        httpx_mock.add_response(
            method="POST",
            url=TOKEN_URL,
            status_code=400,
            json={"error": "invalid_grant", "error_description": "code expired"},
        )

        with pytest.raises(AuthExchangeError) as exc_info:
            await oauth_client.exchange_code_for_tokens("old-code", "user-1")

        assert exc_info.value.error_code == "invalid_grant"
        assert exc_info.value.description == "code expired"
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_exchange_malformed_body(self, oauth_client, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json={"access_token": "only"})

        with pytest.raises(AuthExchangeError, match="Invalid response"):
            await oauth_client.exchange_code_for_tokens("code", "user-1")

    @pytest.mark.asyncio
    async def test_exchange_network_error(self, oauth_client, httpx_mock: HTTPXMock):
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))

        with pytest.raises(AuthExchangeError, match="Network error"):
            await oauth_client.exchange_code_for_tokens("code", "user-1")


class TestRefreshToken:
    """Tests for refresh_token."""

    @pytest.mark.asyncio
    async def test_refresh_success_rotates_pair(self, oauth_client, clock, httpx_mock: HTTPXMock):
        """The refresh grant returns the new pair and keeps created_at."""
        previous = make_record(clock)
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json=token_response())

        record = await oauth_client.refresh_token("refresh-old", "user-1", previous=previous)

        assert record.access_token == "access-new"
        assert record.refresh_token == "refresh-new"
        assert record.created_at == previous.created_at
        form = _form(httpx_mock.get_request())
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "refresh-old"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code,body",
        [
            (400, {"error": "invalid_grant"}),
            (401, {"error": "invalid_client"}),
            (403, {"error": "unauthorized_client"}),
        ],
    )
    async def test_refresh_rejected_grant(self, oauth_client, httpx_mock: HTTPXMock, status_code, body):
        """A refused refresh token raises RefreshInvalidError."""
        httpx_mock.add_response(method="POST", url=TOKEN_URL, status_code=status_code, json=body)

        with pytest.raises(RefreshInvalidError):
            await oauth_client.refresh_token("dead", "user-1")

    @pytest.mark.asyncio
    async def test_refresh_server_error_is_transient(self, oauth_client, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=TOKEN_URL, status_code=503, text="unavailable")

        with pytest.raises(TokenRefreshError) as exc_info:
            await oauth_client.refresh_token("refresh-old", "user-1")

        assert not isinstance(exc_info.value, RefreshInvalidError)

    @pytest.mark.asyncio
    async def test_refresh_network_error_is_transient(self, oauth_client, httpx_mock: HTTPXMock):
        httpx_mock.add_exception(httpx.ReadTimeout("timed out"))

        with pytest.raises(TokenRefreshError):
            await oauth_client.refresh_token("refresh-old", "user-1")
