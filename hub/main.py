"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.trustedhost import TrustedHostMiddleware

from hub import __version__
from hub.api.auth import router as auth_router
from hub.api.files import router as files_router
from hub.api.github import router as github_router
from hub.api.health import router as health_router
from hub.api.sources import router as sources_router
from hub.api.sync import router as sync_router
from hub.config import Settings
from hub.database import create_engine, init_schema, sqlite_file
from hub.exceptions import (
    InternalServerError,
    RemoteError,
    RemoteRejected,
    RemoteTimeout,
    SyncInProgressError,
)
from hub.services.auth_service import ensure_bootstrap_user

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)

_DEBUG_ORIGINS = ["http://localhost:5173", "http://localhost:8000"]
_DEBUG_HOSTS = ["localhost", "127.0.0.1", "::1", "test", "testserver"]


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stdout,
        force=True,
    )
    # Per-request and per-blob lines drown out sync summaries.
    for noisy in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Prepare the database and bootstrap user, then dispose the engine on shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting Knowledge Hub %s (debug=%s)", __version__, settings.debug)

    db_file = sqlite_file(settings.database_url)
    if db_file is not None:
        db_file.parent.mkdir(parents=True, exist_ok=True)

    engine, session_factory = create_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    try:
        await init_schema(engine)
        async with session_factory() as session:
            await ensure_bootstrap_user(session, settings)
    except Exception as exc:
        logger.critical("Database initialization failed for %s: %s", settings.database_url, exc)
        await engine.dispose()
        raise

    yield

    await engine.dispose()
    logger.info("Knowledge Hub stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs
    app = FastAPI(
        title="Knowledge Hub",
        description="Mirror remote repositories into a searchable local store",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins or (_DEBUG_ORIGINS if settings.debug else []),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    trusted_hosts = settings.trusted_hosts or (_DEBUG_HOSTS if settings.debug else [])
    if trusted_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

    for router in (
        health_router,
        auth_router,
        github_router,
        sources_router,
        files_router,
        sync_router,
    ):
        app.include_router(router)

    register_exception_handlers(app)
    return app


def _remote_status(exc: RemoteError) -> tuple[int, str]:
    if isinstance(exc, RemoteRejected):
        # Client errors pass through; anything else is the remote's fault.
        if 400 <= exc.status_code < 500:
            return exc.status_code, exc.message
        return 502, exc.message
    if isinstance(exc, RemoteTimeout):
        return 504, "Remote repository API timed out"
    return 503, "Remote repository API unavailable"


def register_exception_handlers(app: FastAPI) -> None:
    """Install the global handlers that map domain errors onto HTTP responses."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("HTTP %d in %s %s", exc.status_code, request.method, request.url.path)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {
                "field": str(err["loc"][-1]) if err.get("loc") else "unknown",
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]
        logger.warning("Invalid request to %s %s: %s", request.method, request.url.path, errors)
        return JSONResponse(
            status_code=422, content={"error": "Validation failed", "fields": errors}
        )

    @app.exception_handler(RemoteError)
    async def remote_error_handler(request: Request, exc: RemoteError) -> JSONResponse:
        status_code, detail = _remote_status(exc)
        level = logging.WARNING if status_code < 500 else logging.ERROR
        logger.log(
            level,
            "%s in %s %s: %s",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc,
        )
        return JSONResponse(status_code=status_code, content={"error": detail})

    @app.exception_handler(SyncInProgressError)
    async def sync_in_progress_handler(
        request: Request, exc: SyncInProgressError
    ) -> JSONResponse:
        logger.info("Rejected concurrent sync of source %d", exc.source_id)
        return JSONResponse(status_code=409, content={"error": str(exc)})

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(status_code=422, content={"error": str(exc) or "Invalid value"})

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503, content={"error": "Database temporarily unavailable"}
        )


app = create_app()


def cli_entry() -> None:
    """Run the server with uvicorn."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "hub.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
