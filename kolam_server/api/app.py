"""
FastAPI application factory for the Kolam HTTP front-end.

This module creates the FastAPI app with:
- Database lifecycle management (open, seed tutorial, close)
- Stores and bridge service on app.state
- KolamError rendering as {"error", "error_code"} JSON
- CORS configuration for the desktop/web frontend

Usage:
    uvicorn kolam_server.api.app:app --port 8765
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..bridge import BridgeService
from ..config import ServerConfig
from ..errors import (
    BridgeKeyMismatchError,
    InvalidInputError,
    KolamError,
    LockUnavailableError,
    NotFoundError,
)
from ..store import ContentStore, Database, StagingSet, StreamStore
from .config import Settings
from .routes import router

ERROR_STATUS = (
    (NotFoundError, 404),
    (InvalidInputError, 400),
    (BridgeKeyMismatchError, 409),
    (LockUnavailableError, 503),
)


def status_for(exc: KolamError) -> int:
    """HTTP status for a Kolam error; unknown subclasses map to 500."""
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


async def kolam_error_handler(request: Request, exc: KolamError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content={"error": exc.message, "error_code": exc.code, "details": exc.details},
    )


def create_app(config: ServerConfig | None = None, settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Storage/bridge configuration (defaults to the environment)
        settings: HTTP settings (defaults to the environment)
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Open the database for the lifetime of the app."""
        server_config = config or ServerConfig.from_env()
        db = Database.from_config(server_config.storage)
        await db.initialize()

        streams = StreamStore(db)
        if server_config.storage.seed_tutorial:
            await streams.seed_tutorial_stream()

        app.state.config = server_config
        app.state.settings = settings
        app.state.db = db
        app.state.streams = streams
        app.state.content = ContentStore(db)
        app.state.staging = StagingSet(db)
        app.state.bridge = BridgeService(db, config=server_config.bridge)

        yield

        await db.close()

    app = FastAPI(
        title="Kolam",
        description="Streams of versioned entries with a copy/paste bridge to external assistants.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(KolamError, kolam_error_handler)

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "kolam", "version": __version__}

    return app


# Default app instance
app = create_app()
