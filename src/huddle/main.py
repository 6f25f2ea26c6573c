# src/huddle/main.py
"""Main entry point for the Huddle application."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import Response

from huddle.api.v1 import (
    conversations_router,
    messages_router,
    realtime_router,
    users_router,
)
from huddle.api.v1.dependencies import to_http_exception
from huddle.core.settings import settings
from huddle.db.session import create_tables
from huddle.realtime.messenger import Messenger, create_messenger
from huddle.services.errors import MessagingError

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Huddle API",
    description="Real-time messaging: conversations, presence, typing, receipts, reactions",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(users_router, prefix="/api/v1")
app.include_router(conversations_router, prefix="/api/v1")
app.include_router(messages_router, prefix="/api/v1")
app.include_router(realtime_router, prefix="/api/v1")


@app.exception_handler(MessagingError)
async def messaging_error_handler(request: Request, exc: MessagingError) -> Response:
    return await http_exception_handler(request, to_http_exception(exc))


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@app.on_event("startup")
async def on_startup() -> None:
    configure_logging()
    create_tables()
    messenger = create_messenger()
    await messenger.start()
    app.state.messenger = messenger


@app.on_event("shutdown")
async def on_shutdown() -> None:
    messenger: Messenger | None = getattr(app.state, "messenger", None)
    if messenger:
        await messenger.stop()
        app.state.messenger = None


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Real-time messaging API",
        "websocket": "/api/v1/ws",
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("huddle.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
