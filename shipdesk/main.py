"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator
import logging

from fastapi import FastAPI

from shipdesk.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    # Build the rate limiter eagerly so the store choice shows up in the logs
    from shipdesk.api.deps import get_rate_limiter

    limiter = get_rate_limiter()
    logger.info(f"{settings.APP_NAME} started (rate limiter: {limiter.store.name})")

    if not settings.chitchats_configured:
        logger.warning("CHIT_CHATS_CLIENT_ID / CHIT_CHATS_ACCESS_TOKEN not set")

    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        description="Shipping proxy for a browser-based Etsy shop-management tool",
        lifespan=lifespan,
        docs_url="/api/docs" if settings.DEBUG else None,
        redoc_url="/api/redoc" if settings.DEBUG else None,
    )

    # CORS middleware
    from shipdesk.api.cors import PreflightCORSMiddleware

    app.add_middleware(
        PreflightCORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )

    # Error envelope
    from shipdesk.api.errors import register_exception_handlers

    register_exception_handlers(app)

    # Register API routers
    from shipdesk.api.v1.router import api_router

    app.include_router(api_router, prefix="/api/v1")

    return app


# Create the application instance
app = create_app()
