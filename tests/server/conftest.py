"""Pytest fixtures for FastAPI server tests.

This module provides an in-memory database, a fully wired MTD container
over it, and a test client bound to that container.
"""

from datetime import datetime, timedelta
from typing import Generator

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from src.oauth.config import HmrcOAuthConfig
from src.server.config import Settings
from src.server.database.session import Base, create_tables
from src.server.dependencies import MtdContainer, build_container
from src.server.main import create_app
from src.server.repositories import HmrcTokenRepository

USER_ID = "user-1"

# Browser-collected fraud prevention values the front end forwards
CLIENT_HEADERS = {
    "X-User-Id": USER_ID,
    "X-Forwarded-For": "198.51.100.7",
    "Gov-Client-Device-ID": "beec798b-b366-47fa-b1f8-92cede14a1ce",
    "Gov-Client-Timezone": "UTC+01:00",
    "Gov-Client-Local-IPs": "192.168.1.20",
}


@pytest.fixture(scope="function")
def session_factory() -> Generator[sessionmaker, None, None]:
    """Session factory over an in-memory SQLite database.

    StaticPool keeps the single connection alive so every session (and
    every worker thread) sees the same database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(engine)

    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_db(session_factory) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def container(session_factory) -> MtdContainer:
    """MTD container with SQL stores, no retries and fixed vendor values."""
    settings = Settings(
        vendor_public_ip="203.0.113.10",
        trust_forwarded_for=True,
        max_retries=0,
        retry_delay=0,
        request_timeout=5,
    )
    oauth_config = HmrcOAuthConfig(client_id="test_client_id", client_secret="test_client_secret")
    return build_container(
        settings,
        oauth_config=oauth_config,
        http_client=httpx.AsyncClient(),
        session_factory=session_factory,
    )


@pytest.fixture(scope="function")
def client(container) -> Generator[TestClient, None, None]:
    """Test client whose requests carry the caller id and fraud headers."""
    app = create_app(container)
    with TestClient(app, headers=CLIENT_HEADERS) as test_client:
        yield test_client


@pytest.fixture
def connected_user(test_db):
    """Store a valid token pair for USER_ID."""
    now = datetime.utcnow()
    HmrcTokenRepository(test_db).upsert(
        user_id=USER_ID,
        access_token="access-db",
        refresh_token="refresh-db",
        expires_at=now + timedelta(hours=4),
        token_type="bearer",
        scope="read:self-assessment write:self-assessment",
        updated_at=now,
        created_at=now,
    )
    return USER_ID
