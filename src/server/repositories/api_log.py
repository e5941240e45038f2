"""Repository for HMRC API log rows.

Provides the append, filtered read, error aggregate and retention delete
operations the audit log needs. Timestamps are naive UTC throughout.
"""

import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from src.server.database.models.api_log import HmrcApiLog

logger = logging.getLogger(__name__)


class ApiLogRepository:
    """Repository for the HMRC API audit log."""

    def __init__(self, db: Session):
        """Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def create(self, **fields: Any) -> HmrcApiLog:
        """Append a log row.

        Args:
            **fields: Column values for HmrcApiLog

        Returns:
            Created HmrcApiLog instance
        """
        log = HmrcApiLog(**fields)
        self.db.add(log)
        self.db.commit()
        self.db.refresh(log)
        return log

    def list_logs(
        self,
        user_id: Optional[str] = None,
        endpoint: Optional[str] = None,
        status: str = "all",
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[HmrcApiLog]:
        """List log rows, newest first.

        Args:
            user_id: Filter by user
            endpoint: Case-insensitive endpoint substring
            status: "success" (2xx), "error" (>=400 or error code) or "all"
            start_date: Rows at or after this time
            end_date: Rows at or before this time
            limit: Maximum number of rows to return

        Returns:
            List of HmrcApiLog instances
        """
        query = self.db.query(HmrcApiLog)

        if user_id:
            query = query.filter(HmrcApiLog.user_id == user_id)
        if endpoint:
            query = query.filter(HmrcApiLog.endpoint.ilike(f"%{endpoint}%"))
        if status == "success":
            query = query.filter(HmrcApiLog.response_status >= 200, HmrcApiLog.response_status < 300)
        elif status == "error":
            query = query.filter(
                or_(HmrcApiLog.response_status >= 400, HmrcApiLog.error_code.isnot(None))
            )
        if start_date:
            query = query.filter(HmrcApiLog.timestamp >= start_date)
        if end_date:
            query = query.filter(HmrcApiLog.timestamp <= end_date)

        query = query.order_by(HmrcApiLog.timestamp.desc(), HmrcApiLog.id.desc())
        return query.limit(limit).all()

    def count_errors(self, user_id: str, start_date: datetime) -> List[Tuple[Optional[str], int, int]]:
        """Count a user's error rows since ``start_date``.

        Args:
            user_id: User whose rows are counted
            start_date: Rows at or after this time

        Returns:
            (error_code, response_status, count) per distinct pair
        """
        rows = (
            self.db.query(HmrcApiLog.error_code, HmrcApiLog.response_status, func.count(HmrcApiLog.id))
            .filter(
                HmrcApiLog.user_id == user_id,
                HmrcApiLog.timestamp >= start_date,
                or_(HmrcApiLog.response_status >= 400, HmrcApiLog.error_code.isnot(None)),
            )
            .group_by(HmrcApiLog.error_code, HmrcApiLog.response_status)
            .all()
        )
        return [(code, status, count) for code, status, count in rows]

    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete log rows with a timestamp strictly before ``cutoff``.

        Args:
            cutoff: Naive UTC cutoff; rows exactly at it are kept

        Returns:
            Number of rows deleted
        """
        count = (
            self.db.query(HmrcApiLog)
            .filter(HmrcApiLog.timestamp < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info(f"Deleted {count} API log rows older than {cutoff.isoformat()}")
        return count
