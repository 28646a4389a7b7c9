"""
Dooly Sync API

FastAPI application serving the shared playback timeline and collaborative
song documents over one WebSocket, plus a few read-only HTTP routes.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from typing import Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from dooly.config import settings
from dooly.api.routes import documents, health, playback, sync, timesync
from dooly.protocol.endpoints import router as protocol_router
from dooly.realtime.hub import get_sync_hub


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all HTTP responses."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        response = await call_next(request)

        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # Permissions policy (disable unnecessary features)
        response.headers["Permissions-Policy"] = (
            "accelerometer=(), camera=(), geolocation=(), "
            "gyroscope=(), magnetometer=(), microphone=(), "
            "payment=(), usb=()"
        )

        return response


# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Rate limiter - uses IP address as key
limiter = timesync.limiter


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(
        f"Timeline tick {settings.timeline_tick_seconds}s, "
        f"outbound queue {settings.outbound_queue_size} frames"
    )

    hub = get_sync_hub()
    hub.start()

    yield

    # Cleanup
    logger.info("Shutting down...")
    await hub.stop()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Shared playback clock and collaborative sequencer sync.",
    lifespan=lifespan,
    # Disable public docs unless DOOLY_DEBUG=true
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
)

# Add rate limiter to app state and exception handler
app.state.limiter = limiter
app.add_exception_handler(
    RateLimitExceeded,
    _rate_limit_exceeded_handler,  # type: ignore[arg-type]  # slowapi handler signature is (Request, RateLimitExceeded) not (Request, Exception)
)

# Security headers middleware (added first, runs last)
app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(timesync.router, prefix="/api/v1", tags=["timesync"])
app.include_router(playback.router, prefix="/api/v1", tags=["playback"])
app.include_router(documents.router, prefix="/api/v1", tags=["documents"])
app.include_router(sync.router, prefix="/api/v1", tags=["sync"])
app.include_router(protocol_router, prefix="/api/v1", tags=["protocol"])


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with service info."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "sync": "/api/v1/sync",
    }
