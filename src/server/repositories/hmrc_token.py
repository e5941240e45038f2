"""Repository for HMRC OAuth token rows."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from src.server.database.models.hmrc_token import HmrcToken

logger = logging.getLogger(__name__)


class HmrcTokenRepository:
    """Repository for managing per-user HMRC tokens.

    At most one row exists per user; ``upsert`` replaces the token values
    in place and keeps ``created_at``.
    """

    def __init__(self, db: Session):
        """Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def get_by_user(self, user_id: str) -> Optional[HmrcToken]:
        return self.db.query(HmrcToken).filter(HmrcToken.user_id == user_id).first()

    def upsert(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        token_type: str,
        scope: str,
        updated_at: datetime,
        created_at: Optional[datetime] = None,
    ) -> HmrcToken:
        """Insert or replace a user's tokens.

        Args:
            user_id: Owner of the tokens
            access_token: New access token
            refresh_token: New refresh token
            expires_at: Absolute expiry (naive UTC)
            token_type: Token type
            scope: Granted scopes
            updated_at: Issue time (naive UTC)
            created_at: First connection time for a new row (naive UTC)

        Returns:
            The stored HmrcToken row
        """
        token = self.get_by_user(user_id)
        if token is None:
            token = HmrcToken(user_id=user_id, created_at=created_at or updated_at)
            self.db.add(token)

        token.access_token = access_token
        token.refresh_token = refresh_token
        token.expires_at = expires_at
        token.token_type = token_type
        token.scope = scope
        token.updated_at = updated_at

        self.db.commit()
        self.db.refresh(token)
        logger.debug(f"Upserted tokens for user {user_id}")
        return token

    def delete_by_user(self, user_id: str) -> bool:
        """Delete a user's tokens.

        Returns:
            True if a row was deleted, False if there was none
        """
        count = self.db.query(HmrcToken).filter(HmrcToken.user_id == user_id).delete()
        self.db.commit()
        return count > 0
