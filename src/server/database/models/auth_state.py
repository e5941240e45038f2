"""Pending OAuth authorization state database model."""

from sqlalchemy import Column, DateTime, String

from src.server.database.session import Base


class MtdAuthState(Base):
    """CSRF state for an in-progress HMRC authorization.

    Rows are deleted when the callback consumes them.
    """

    __tablename__ = "mtd_auth_states"

    state = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<MtdAuthState(user_id={self.user_id}, expires_at={self.expires_at})>"
