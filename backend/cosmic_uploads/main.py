"""Cosmic Uploads Backend Application.

Entry point for the Cosmic Uploads backend: an ephemeral file-sharing
service.  Uploaded files live for 24 hours and the store as a whole is
capped at 5GB, oldest uploads evicted first.

Modules:
    - storage: file store (index, blobs, reapers) and the /api endpoints
    - share: /file/{id} embed page for link previews

Run with ``uvicorn cosmic_uploads.main:app``.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from cosmic_uploads.config import AppConfig, get_config
from cosmic_uploads.share.router import router as share_router
from cosmic_uploads.storage.router import router as storage_router
from cosmic_uploads.storage.schemas import to_iso
from cosmic_uploads.storage.service import FileStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

# Subset of helmet's defaults that matter for a JSON + file API.
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "cross-origin",
    "Content-Security-Policy": (
        "default-src 'self';base-uri 'self';font-src 'self' https: data:;"
        "form-action 'self';frame-ancestors 'self';img-src 'self' data:;"
        "object-src 'none';script-src 'self';script-src-attr 'none';"
        "style-src 'self' https: 'unsafe-inline';upgrade-insecure-requests"
    ),
}


def create_app(
    config: Optional[AppConfig] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Settings to use; defaults to the process-wide config.
        clock: Time source for the file store (tests pass a fake one).
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Own the FileStore: create and start on startup, stop on shutdown."""
        # Apply configured log level to root logger
        configured_level = getattr(logging, config.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", config.logging.level.upper())

        store = FileStore(config.storage, clock=clock)
        app.state.file_store = store
        await store.start()
        logger.info(
            "Cosmic Uploads backend running on %s:%s",
            config.server.host,
            config.server.port,
        )

        yield  # Application runs here

        # Shutdown
        await store.stop()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Cosmic Uploads API",
        description="Ephemeral file sharing: uploads expire after 24 hours",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.server.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    app.include_router(storage_router)
    app.include_router(share_router)

    @app.get("/api/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object with the current server time.
        """
        return {"status": "OK", "timestamp": to_iso(datetime.now(timezone.utc))}

    return app


app = create_app()
