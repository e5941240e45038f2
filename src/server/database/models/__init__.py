"""Database models for the backend server.

Models:
    HmrcToken: Per-user HMRC OAuth tokens
    HmrcApiLog: Audit log of HMRC API calls
    MtdAuthState: Pending OAuth authorization states
"""

from .api_log import HmrcApiLog
from .auth_state import MtdAuthState
from .hmrc_token import HmrcToken

__all__ = [
    "HmrcApiLog",
    "HmrcToken",
    "MtdAuthState",
]
