"""Data access layer repositories."""

from src.server.repositories.api_log import ApiLogRepository
from src.server.repositories.auth_state import AuthStateRepository
from src.server.repositories.hmrc_token import HmrcTokenRepository

__all__ = [
    "ApiLogRepository",
    "AuthStateRepository",
    "HmrcTokenRepository",
]
