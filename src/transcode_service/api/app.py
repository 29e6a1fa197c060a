"""FastAPI application setup."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..config import get_settings
from ..events import StorageEventSubscriber
from ..tasks import start_worker, stop_worker, close_task_queue
from ..tasks.worker import signal_shutdown
from .routes import events, maintenance, media, tasks

logger = logging.getLogger(__name__)

# Maximum timestamp drift allowed (5 minutes)
MAX_TIMESTAMP_DRIFT_MS = 5 * 60 * 1000

# Storage pushes authenticate with PUSH_VERIFICATION_TOKEN instead
UNSIGNED_PATH_PREFIXES = ("/health", "/api/events/")


class HMACAuthMiddleware(BaseHTTPMiddleware):
    """Middleware to verify HMAC signature on API requests."""

    def __init__(self, app, shared_secret: str | None):
        super().__init__(app)
        self.shared_secret = shared_secret

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(UNSIGNED_PATH_PREFIXES):
            return await call_next(request)

        # Skip auth if shared secret not configured (dev mode)
        if not self.shared_secret:
            return await call_next(request)

        signature = request.headers.get("x-signature")
        timestamp_str = request.headers.get("x-timestamp")

        if not signature or not timestamp_str:
            return JSONResponse(
                status_code=401,
                content={"error": "Missing authentication headers"},
            )

        # Validate timestamp to prevent replay attacks
        try:
            timestamp = int(timestamp_str)
        except ValueError:
            return JSONResponse(
                status_code=401,
                content={"error": "Invalid timestamp"},
            )

        current_time_ms = int(time.time() * 1000)
        if abs(current_time_ms - timestamp) > MAX_TIMESTAMP_DRIFT_MS:
            return JSONResponse(
                status_code=401,
                content={"error": "Request expired"},
            )

        body = await request.body()
        try:
            body_str = body.decode("utf-8")
        except UnicodeDecodeError:
            body_str = ""

        payload = f"{timestamp_str}.{body_str}"
        expected = hmac.new(
            self.shared_secret.encode(),
            payload.encode(),
            hashlib.sha256,
        ).hexdigest()

        # Use timing-safe comparison
        if not hmac.compare_digest(signature, expected):
            logger.warning("Invalid HMAC signature on request to %s", request.url.path)
            return JSONResponse(
                status_code=401,
                content={"error": "Invalid signature"},
            )

        return await call_next(request)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    logger.info("Transcode service starting...")

    try:
        await start_worker()
    except Exception as e:
        logger.warning(f"Failed to start transcode worker (Redis may not be available): {e}")

    subscriber = StorageEventSubscriber(settings)
    try:
        await subscriber.start()
    except Exception as e:
        logger.warning(f"Failed to start storage event subscriber: {e}")

    yield

    logger.info("Transcode service shutting down...")
    signal_shutdown()

    try:
        await asyncio.wait_for(subscriber.stop(), timeout=6.0)
    except asyncio.TimeoutError:
        logger.warning("Storage event subscriber stop timed out")
    except Exception as e:
        logger.warning(f"Error stopping storage event subscriber: {e}")

    try:
        await asyncio.wait_for(stop_worker(), timeout=3.0)
    except asyncio.TimeoutError:
        logger.warning("Worker stop timed out")
    except Exception as e:
        logger.warning(f"Error stopping worker: {e}")

    try:
        await asyncio.wait_for(close_task_queue(), timeout=2.0)
    except asyncio.TimeoutError:
        logger.warning("Task queue close timed out")
    except Exception as e:
        logger.warning(f"Error closing task queue: {e}")

    logger.info("Transcode service shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Transcode Service",
        description="Progressive HLS transcoding for uploaded videos",
        version="1.0.0",
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.add_middleware(HMACAuthMiddleware, shared_secret=settings.shared_secret)

    app.include_router(events.router, prefix="/api/events", tags=["events"])
    app.include_router(tasks.router, prefix="/api/tasks", tags=["tasks"])
    app.include_router(maintenance.router, prefix="/api/maintenance", tags=["maintenance"])
    app.include_router(media.router, prefix="/api/media", tags=["media"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
