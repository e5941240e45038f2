"""FastAPI application entry point.

This module initializes the FastAPI application with middleware,
routers, exception handlers and the MTD service container.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.oauth.exceptions import ConfigurationError
from src.server import __version__
from src.server.api.v1.router import router as v1_router
from src.server.config import settings
from src.server.dependencies import MtdContainer, build_container
from src.server.errors import register_exception_handlers
from src.server.models.common import HealthResponse

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(container: Optional[MtdContainer] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        container: Pre-wired MTD collaborators. When omitted the container
            is built from the environment at startup.

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=settings.app_name,
        description="Backend API for HMRC Making Tax Digital income tax submissions",
        version=__version__,
        debug=settings.debug,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Configure CORS middleware for the front end
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(v1_router)
    register_exception_handlers(app)
    app.state.container = container

    @app.on_event("startup")
    async def startup_event():
        """Wire the MTD services unless a container was supplied."""
        logger.info(f"Starting {settings.app_name} v{__version__}")
        logger.info(f"HMRC environment: {settings.environment}")
        logger.info(f"Database path: {settings.database_path}")

        if app.state.container is not None:
            return
        try:
            app.state.container = build_container(settings)
        except ConfigurationError as e:
            logger.warning(f"HMRC integration disabled: {e}")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Close the shared HTTP client."""
        logger.info(f"Shutting down {settings.app_name}")
        if app.state.container is not None:
            await app.state.container.aclose()

    @app.get(
        "/health",
        response_model=HealthResponse,
        status_code=status.HTTP_200_OK,
        tags=["health"],
        summary="Health check endpoint",
    )
    async def health_check() -> HealthResponse:
        """Health check endpoint.

        Example:
            >>> GET /health
            >>> {
            >>>     "status": "healthy",
            >>>     "timestamp": "2026-02-01T10:00:00Z",
            >>>     "environment": "sandbox"
            >>> }
        """
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(timezone.utc),
            environment=settings.environment,
        )

    @app.get(
        "/",
        status_code=status.HTTP_200_OK,
        tags=["root"],
        summary="Root endpoint",
    )
    async def root():
        """Provides basic API information and links to documentation."""
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
            "api": "/api/v1/info",
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """Global exception handler for unhandled errors."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "An unexpected error occurred.",
                "code": "INTERNAL_ERROR",
            },
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.server.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )
