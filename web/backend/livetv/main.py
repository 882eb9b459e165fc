"""
Live TV - FastAPI Backend

Browser live-TV viewer backend: HLS relay, channel catalogue and
per-device favorites.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.types import ASGIApp, Receive, Scope, Send

from livetv.config import get_settings
from livetv.services.store import get_store
from livetv.routers import admin, channels, relay, user

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

settings = get_settings()

# Rate limiter
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("Starting Live TV Backend...")

    await get_store()
    logger.info("Channel store initialized")

    yield

    logger.info("Shutting down Live TV Backend...")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Live TV viewer backend with a playlist-rewriting HLS relay",
    lifespan=lifespan
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


class APICORSMiddleware(CORSMiddleware):
    """CORS for the JSON API. The relay answers its own preflights and sets its own CORS headers."""

    def __init__(self, app: ASGIApp, relay_path: str = "/relay", **kwargs):
        super().__init__(app, **kwargs)
        self.relay_path = relay_path

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"] == self.relay_path:
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


# CORS middleware
app.add_middleware(
    APICORSMiddleware,
    relay_path=settings.relay_path,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=settings.cors_max_age,
)

# Include routers
app.include_router(relay.router)
app.include_router(channels.router)
app.include_router(admin.router)
app.include_router(user.router)


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


# Error handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "livetv.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
