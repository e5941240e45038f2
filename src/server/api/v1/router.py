"""API v1 router with core endpoints.

This module provides version 1 of the API: system information and the
HMRC Making Tax Digital endpoints.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request, status

from src.server.api.v1 import mtd
from src.server.config import settings
from src.server.database.session import check_database_connection
from src.server.models.common import InfoResponse

logger = logging.getLogger(__name__)

# Create v1 router
router = APIRouter(
    prefix="/api/v1",
    tags=["v1"],
)

# Include sub-routers
router.include_router(mtd.router)


@router.get(
    "/info",
    response_model=InfoResponse,
    status_code=status.HTTP_200_OK,
    summary="Get system information",
    description="Returns system information including version, database and HMRC status",
)
async def get_info(request: Request) -> InfoResponse:
    """Get system information endpoint.

    Returns:
        System information including database connection status and
        whether HMRC credentials were loaded at startup

    Example:
        >>> GET /api/v1/info
        >>> {
        >>>     "app_name": "HMRC MTD API",
        >>>     "version": "1.0.0",
        >>>     "status": "running",
        >>>     "database_connected": true,
        >>>     "hmrc_configured": true,
        >>>     "timestamp": "2026-01-31T10:00:00Z"
        >>> }
    """
    db_connected = check_database_connection()
    hmrc_configured = getattr(request.app.state, "container", None) is not None

    return InfoResponse(
        app_name=settings.app_name,
        version=settings.version,
        status="running",
        database_connected=db_connected,
        hmrc_configured=hmrc_configured,
        timestamp=datetime.now(timezone.utc),
    )
