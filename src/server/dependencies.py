"""Dependency wiring for the MTD routes.

All collaborators (HTTP client, stores, OAuth client, refresh coordinator,
API service) are assembled once per process into an ``MtdContainer`` that
lives on ``app.state``. Route handlers receive it through FastAPI
dependencies instead of importing module globals.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Header, HTTPException, Request, status
from sqlalchemy.orm import sessionmaker

from src.hmrc.api_logger import ApiLogger, LogStore
from src.hmrc.fraud_headers import FraudHeaderBuilder
from src.hmrc.service import CallContext, MtdApiService
from src.oauth.client import HmrcOAuthClient
from src.oauth.config import HmrcOAuthConfig
from src.oauth.coordinator import TokenRefreshCoordinator
from src.oauth.exceptions import ConfigurationError
from src.oauth.state import AuthorizationFlow, AuthStateStore
from src.oauth.token_storage import TokenStore
from src.server.config import Settings
from src.server.database.session import create_tables, get_session_factory
from src.server.stores import SqlAuthStateStore, SqlLogStore, SqlTokenStore

logger = logging.getLogger(__name__)


@dataclass
class MtdContainer:
    """Process-wide collaborators for the MTD routes."""

    settings: Settings
    oauth_config: HmrcOAuthConfig
    http_client: httpx.AsyncClient
    token_store: TokenStore
    state_store: AuthStateStore
    log_store: LogStore
    oauth_client: HmrcOAuthClient
    coordinator: TokenRefreshCoordinator
    auth_flow: AuthorizationFlow
    api_logger: ApiLogger
    fraud_builder: FraudHeaderBuilder
    service: MtdApiService

    @property
    def is_sandbox(self) -> bool:
        """Whether calls go to the HMRC sandbox, judged by the API base URL."""
        return self.oauth_config.is_sandbox

    async def aclose(self) -> None:
        await self.http_client.aclose()


def build_container(
    settings: Settings,
    oauth_config: Optional[HmrcOAuthConfig] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    token_store: Optional[TokenStore] = None,
    state_store: Optional[AuthStateStore] = None,
    log_store: Optional[LogStore] = None,
    session_factory: Optional[sessionmaker] = None,
) -> MtdContainer:
    """Assemble every collaborator the routes need.

    Stores default to the SQLAlchemy implementations over ``session_factory``
    (or the application database when none is given).

    Args:
        settings: Server settings
        oauth_config: HMRC OAuth configuration (loaded from env if omitted)
        http_client: Shared async HTTP client (created if omitted)
        token_store: Token persistence override
        state_store: Authorization state persistence override
        log_store: API log persistence override
        session_factory: Session factory for the SQL stores

    Returns:
        Wired MtdContainer

    Raises:
        ConfigurationError: If HMRC credentials are missing, or the base URL
            and ``settings.environment`` name different HMRC environments
    """
    oauth_config = oauth_config or HmrcOAuthConfig.from_env()
    if oauth_config.is_sandbox == settings.is_production:
        raise ConfigurationError(
            f"HMRC base URL {oauth_config.base_url} does not match environment {settings.environment!r}"
        )
    http_client = http_client or httpx.AsyncClient(timeout=settings.http_timeout)

    if token_store is None or state_store is None or log_store is None:
        if session_factory is None:
            create_tables()
            session_factory = get_session_factory()
        token_store = token_store or SqlTokenStore(session_factory)
        state_store = state_store or SqlAuthStateStore(session_factory)
        log_store = log_store or SqlLogStore(session_factory)

    oauth_client = HmrcOAuthClient(oauth_config, http_client)
    coordinator = TokenRefreshCoordinator(
        token_store, oauth_client, skew_seconds=oauth_config.refresh_skew_seconds
    )
    auth_flow = AuthorizationFlow(
        oauth_client, state_store, token_store, ttl_seconds=oauth_config.state_ttl_seconds
    )
    api_logger = ApiLogger(log_store)
    fraud_builder = FraudHeaderBuilder(
        product_name=settings.vendor_product_name,
        product_version=settings.vendor_product_version,
        vendor_public_ip=settings.vendor_public_ip,
        license_ids=settings.vendor_license_ids,
        trust_forwarded_for=settings.trust_forwarded_for,
        trusted_proxy_hops=settings.trusted_proxy_hops,
    )
    service = MtdApiService(
        base_url=oauth_config.base_url,
        http_client=http_client,
        coordinator=coordinator,
        fraud_builder=fraud_builder,
        api_logger=api_logger,
        sandbox=oauth_config.is_sandbox,
        max_retries=settings.max_retries,
        retry_delay=settings.retry_delay,
        timeout=settings.http_timeout,
    )

    logger.info(f"MTD services wired for {oauth_config.base_url} ({settings.environment})")
    return MtdContainer(
        settings=settings,
        oauth_config=oauth_config,
        http_client=http_client,
        token_store=token_store,
        state_store=state_store,
        log_store=log_store,
        oauth_client=oauth_client,
        coordinator=coordinator,
        auth_flow=auth_flow,
        api_logger=api_logger,
        fraud_builder=fraud_builder,
        service=service,
    )


def get_container(request: Request) -> MtdContainer:
    """FastAPI dependency returning the process-wide container."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="HMRC integration is not configured",
        )
    return container


def get_current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    """FastAPI dependency for the authenticated caller.

    The authenticating front end sets ``X-User-Id`` on every request.

    Raises:
        HTTPException: 401 if the header is missing
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return x_user_id.strip()


def get_call_context(request: Request, user_id: str) -> CallContext:
    """Build the caller context the API service needs from an inbound request."""
    return CallContext(
        user_id=user_id,
        headers=request.headers,
        remote_addr=request.client.host if request.client else None,
    )
