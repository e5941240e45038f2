"""HMRC OAuth token database model."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from src.server.database.session import Base


class HmrcToken(Base):
    """Stored HMRC OAuth tokens, one row per user.

    Attributes:
        id: Unique identifier (auto-incrementing integer)
        user_id: Application user (unique)
        access_token: Current access token
        refresh_token: Current refresh token
        token_type: Token type ("bearer")
        scope: Granted scopes
        expires_at: Absolute access token expiry (naive UTC)
        created_at: When the user first connected (naive UTC)
        updated_at: When the tokens were last issued (naive UTC)
    """

    __tablename__ = "hmrc_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, unique=True, index=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    token_type = Column(String, nullable=False, default="bearer")
    scope = Column(String, nullable=False, default="")
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<HmrcToken(user_id={self.user_id}, expires_at={self.expires_at})>"
