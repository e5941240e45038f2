"""Test helpers shared by the OAuth, HMRC and server tests."""

from datetime import datetime, timedelta

from src.oauth.token_storage import OAuthTokenRecord

TOKEN_URL = "https://test-api.service.hmrc.gov.uk/oauth/token"
API_BASE = "https://test-api.service.hmrc.gov.uk"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def make_record(clock, user_id: str = "user-1", expires_in: int = 3600, **overrides) -> OAuthTokenRecord:
    """Build a token record expiring ``expires_in`` seconds after the clock's now."""
    values = dict(
        user_id=user_id,
        access_token="access-old",
        refresh_token="refresh-old",
        expires_at=clock() + timedelta(seconds=expires_in),
        scope="read:self-assessment write:self-assessment",
        created_at=clock() - timedelta(days=1),
        updated_at=clock(),
    )
    values.update(overrides)
    return OAuthTokenRecord(**values)


def token_response(access: str = "access-new", refresh: str = "refresh-new", expires_in: int = 14400) -> dict:
    return {
        "access_token": access,
        "refresh_token": refresh,
        "expires_in": expires_in,
        "token_type": "bearer",
        "scope": "read:self-assessment write:self-assessment",
    }
