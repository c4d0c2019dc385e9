"""
FastAPI application entry point.
"""

import asyncio
import contextlib
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.config import get_settings
from app.database import close_db, get_engine, init_db
from app.core.errors import CalendarSyncError
from app.core.notifications import forward_notifications, get_connection_manager
from app.core.redis_client import get_redis, close_redis
from app.api import api_router, websocket_router

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting Calendar Sync API...")

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    # Initialize Redis
    redis = await get_redis()
    logger.info("Redis connected")

    # Relay worker notifications to this process's sockets
    forwarder = asyncio.create_task(
        forward_notifications(redis, get_connection_manager(), settings.notification_channel)
    )

    yield

    # Shutdown
    logger.info("Shutting down Calendar Sync API...")

    forwarder.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await forwarder

    await close_db()
    await close_redis()

    logger.info("Shutdown complete")


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Build the application. Without the lifespan no database or Redis connection is opened."""
    app = FastAPI(
        title="Calendar Sync API",
        description="Multi-provider calendar synchronization with timezone-aware events",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else None,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(CalendarSyncError)
    async def calendar_sync_error_handler(request: Request, exc: CalendarSyncError):
        """Expected failures carry their own status code and user-facing message."""
        if exc.status_code >= 500:
            logger.warning(f"{exc.code} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.debug else "An unexpected error occurred",
            },
        )

    # Include API routes
    app.include_router(api_router)
    app.include_router(websocket_router, tags=["WebSocket"])

    @app.get("/health")
    async def health_check():
        """Liveness check; does not touch dependencies."""
        return {
            "status": "healthy",
            "version": "1.0.0",
            "uptime": int(time.monotonic() - STARTED_AT),
        }

    @app.get("/ready")
    async def ready_check():
        """Readiness check: the database and Redis must both answer."""
        checks = {}
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "connected"
        except Exception as e:
            logger.error(f"Database readiness check failed: {e}")
            checks["database"] = "unavailable"
        try:
            redis = await get_redis()
            await redis.ping()
            checks["redis"] = "connected"
        except Exception as e:
            logger.error(f"Redis readiness check failed: {e}")
            checks["redis"] = "unavailable"

        if all(value == "connected" for value in checks.values()):
            return {"status": "ready", **checks}
        return JSONResponse(status_code=503, content={"status": "not_ready", **checks})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
