"""Repository for pending OAuth authorization states."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from src.server.database.models.auth_state import MtdAuthState

logger = logging.getLogger(__name__)


class AuthStateRepository:
    """Repository for CSRF state rows."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, state: str, user_id: str, created_at: datetime, expires_at: datetime) -> MtdAuthState:
        row = MtdAuthState(state=state, user_id=user_id, created_at=created_at, expires_at=expires_at)
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def consume(self, state: str) -> Optional[MtdAuthState]:
        """Fetch and delete a state row in one transaction.

        Returns:
            The detached row, or None if the state is unknown or already used
        """
        row = self.db.query(MtdAuthState).filter(MtdAuthState.state == state).first()
        if row is None:
            return None

        # Detach so the loaded values survive the delete and commit
        self.db.expunge(row)
        deleted = self.db.query(MtdAuthState).filter(MtdAuthState.state == state).delete()
        self.db.commit()
        if not deleted:
            # Consumed concurrently by another request
            return None
        return row

    def delete_expired(self, now: datetime) -> int:
        count = self.db.query(MtdAuthState).filter(MtdAuthState.expires_at < now).delete()
        self.db.commit()
        if count:
            logger.info(f"Deleted {count} expired authorization states")
        return count
