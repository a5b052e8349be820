"""FastAPI application for Courier.

Run with ``uvicorn courier.api:app``. Settings come from ``COURIER_*``
environment variables unless ``create_app`` is given explicit ones.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from courier import __version__
from courier.config import Settings
from courier.exceptions import CourierError
from courier.logging import configure_logging, get_logger
from courier.service import ForwardingService

from .router import router, set_service

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own the ForwardingService for the life of the process.

    On startup overdue deliveries are re-queued and the retry sweeper
    starts; on shutdown queued attempts are cancelled and the store closed.
    """
    settings: Settings = app.state.settings
    configure_logging(level=settings.log_level, format=settings.log_format)

    service = ForwardingService.create(settings)
    await service.initialize(run_sweeper=True)
    set_service(service)
    logger.info(
        "Courier API ready",
        env=settings.env,
        storage_backend=settings.storage_backend,
        sweep_interval_seconds=settings.sweep_interval_seconds,
    )

    try:
        yield
    finally:
        set_service(None)
        await service.close()
        logger.info("Courier API stopped")


async def courier_error_handler(request: Request, exc: CourierError) -> JSONResponse:
    """Render a CourierError as its own status code and error body."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "Request rejected",
        code=exc.code,
        status_code=exc.status_code,
        error=exc.message,
        method=request.method,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the Courier API with routes mounted under ``/api/v1``."""
    app = FastAPI(
        title="Courier",
        description="Signed, retried webhook forwarding of account events.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings or Settings()
    app.add_exception_handler(CourierError, courier_error_handler)  # type: ignore[arg-type]
    app.include_router(router, prefix="/api/v1")
    return app


app = create_app()
