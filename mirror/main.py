"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from mirror.api.health import router as health_router
from mirror.api.media import router as media_router
from mirror.api.playlist import router as playlist_router
from mirror.api.sync import router as sync_router
from mirror.config import Settings
from mirror.exceptions import ManifestFormatError, NotFoundError, RangeNotSatisfiable
from mirror.services.manifest_service import ManifestStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable
    from pathlib import Path

    from starlette.responses import Response

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)


def ensure_media_dir(media_dir: Path) -> None:
    """Create the media root if needed without touching existing content."""
    if media_dir.exists() and not media_dir.is_dir():
        msg = f"Media path exists but is not a directory: {media_dir}"
        raise NotADirectoryError(msg)

    if not media_dir.exists():
        logger.info("Creating media directory at %s", media_dir)
        media_dir.mkdir(parents=True)


async def _start_sync_scheduler(app: FastAPI, settings: Settings) -> asyncio.Task[None] | None:
    """Start periodic reconciliation passes when configured."""
    if not settings.sync_interval_seconds:
        return None

    from mirror.drive.google_drive import create_drive_client
    from mirror.services.sync_service import SyncEngine, run_periodically

    client = create_drive_client(settings)
    engine = SyncEngine.from_settings(settings, client, app.state.manifest_store)
    app.state.sync_engine = engine
    app.state.remote_client = client
    logger.info("Scheduling sync passes every %d seconds", settings.sync_interval_seconds)
    return asyncio.create_task(
        run_periodically(engine, settings.sync_interval_seconds), name="sync-scheduler"
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime()
    _configure_logging(settings.debug)
    logger.info("Starting Kiosk Mirror (debug=%s)", settings.debug)

    try:
        ensure_media_dir(settings.media_dir)
    except Exception as exc:
        logger.critical("Failed to initialize media directory at %s: %s.", settings.media_dir, exc)
        raise

    try:
        scheduler = await _start_sync_scheduler(app, settings)
    except Exception as exc:
        logger.critical("Failed to start sync scheduler: %s", exc)
        raise

    yield

    if scheduler is not None:
        # Cancelling the scheduler aborts any in-flight downloads of the current pass.
        scheduler.cancel()
        with suppress(asyncio.CancelledError):
            await scheduler

    client = getattr(app.state, "remote_client", None)
    if client is not None:
        try:
            await client.aclose()
        except Exception as exc:
            logger.error("Error closing remote client: %s", exc, exc_info=True)

    logger.info("Kiosk Mirror stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="Kiosk Mirror",
        description="Mirrors a remote media folder and serves it to kiosk displays",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings
    app.state.manifest_store = ManifestStore(settings.manifest_path)
    app.state.sync_engine = None

    cors_origins = (
        settings.cors_origins
        if settings.cors_origins
        else (["http://localhost:3000", "http://localhost:8000"] if settings.debug else [])
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=False,
        allow_methods=["GET"],
        allow_headers=["Range"],
        expose_headers=["Content-Range", "Content-Length", "Accept-Ranges"],
    )

    trusted_hosts = settings.trusted_hosts or (
        ["localhost", "127.0.0.1", "::1", "test", "testserver"] if settings.debug else []
    )
    if trusted_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

    @app.middleware("http")
    async def security_headers(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        response = await call_next(request)
        if settings.security_headers_enabled:
            response.headers.setdefault("X-Content-Type-Options", "nosniff")
            response.headers.setdefault("Referrer-Policy", "no-referrer")
        return response

    app.include_router(health_router)
    app.include_router(playlist_router)
    app.include_router(media_router)
    app.include_router(sync_router)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> PlainTextResponse:
        # Same body whether the name is unknown or the file vanished from disk.
        logger.debug("Media not found in %s %s: %s", request.method, request.url.path, exc)
        return PlainTextResponse("Not found", status_code=404)

    @app.exception_handler(RangeNotSatisfiable)
    async def range_not_satisfiable_handler(
        request: Request, exc: RangeNotSatisfiable
    ) -> PlainTextResponse:
        logger.info("Unsatisfiable range in %s %s: %s", request.method, request.url.path, exc)
        return PlainTextResponse(
            "Requested Range Not Satisfiable",
            status_code=416,
            headers={"Content-Range": f"bytes */{exc.file_size}", "Accept-Ranges": "bytes"},
        )

    @app.exception_handler(ManifestFormatError)
    async def manifest_format_handler(
        request: Request, exc: ManifestFormatError
    ) -> JSONResponse:
        logger.error(
            "ManifestFormatError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(status_code=503, content={"detail": "Manifest unavailable"})

    # Global exception handlers: safety net for unhandled exceptions

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Storage operation failed"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(
            status_code=422,
            content={"detail": message},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "mirror.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
