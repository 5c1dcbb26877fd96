# src/webhook_relay/main.py
"""Main entry point for the webhook relay."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from webhook_relay.api.v1 import (
    bindings_router,
    events_router,
    snapshots_router,
    system_router,
)
from webhook_relay.core.errors import (
    BindingNotFoundError,
    EndpointValidationError,
    InvalidEndpointError,
    RelayError,
    SnapshotInProgressError,
    SnapshotNotFoundError,
    SnapshotParseError,
    SnapshotTransportError,
    StorageError,
)
from webhook_relay.core.log_config import configure_logging
from webhook_relay.core.settings import settings
from webhook_relay.db.session import build_engine, build_session_factory, create_tables
from webhook_relay.services.admin import AdminService
from webhook_relay.services.delivery import DeliveryPipeline
from webhook_relay.services.registry import RegistryStore
from webhook_relay.services.snapshot_service import SnapshotService, SnapshotWorker
from webhook_relay.services.snapshot_store import LocalSnapshotStore, build_remote_store

# Configure logger for this module
logger = logging.getLogger(__name__)

_ERROR_STATUS: list[tuple[type[RelayError], int]] = [
    (BindingNotFoundError, status.HTTP_404_NOT_FOUND),
    (SnapshotNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidEndpointError, status.HTTP_400_BAD_REQUEST),
    (EndpointValidationError, status.HTTP_400_BAD_REQUEST),
    (SnapshotParseError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (SnapshotInProgressError, status.HTTP_409_CONFLICT),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (SnapshotTransportError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


async def relay_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Translate domain errors into HTTP responses."""
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("Request failed: %s", exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_app(
    engine: Engine | None = None,
    http_client: httpx.AsyncClient | None = None,
    run_background: bool = True,
) -> FastAPI:
    """Build the application.

    Services are created in the lifespan and stored on ``app.state``.
    ``engine`` and ``http_client`` replace the configured database and the
    internally created HTTP clients.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        db_engine = engine or build_engine()
        create_tables(db_engine)
        session_factory = build_session_factory(db_engine)

        registry = RegistryStore(session_factory)
        pipeline = DeliveryPipeline(registry, client=http_client)
        remote_store = build_remote_store(http_client)
        snapshot_service = SnapshotService(
            session_factory,
            registry,
            LocalSnapshotStore(settings.snapshot_dir, settings.snapshot_retention),
            remote_store,
        )
        worker = SnapshotWorker(snapshot_service)

        app.state.session_factory = session_factory
        app.state.registry = registry
        app.state.pipeline = pipeline
        app.state.admin_service = AdminService(registry, pipeline)
        app.state.snapshot_service = snapshot_service
        app.state.snapshot_worker = worker

        if run_background and settings.restore_on_startup:
            try:
                await snapshot_service.restore_if_empty()
            except RelayError as exc:
                logger.error("Startup restore failed, continuing with current data: %s", exc)
        if run_background and settings.snapshot_schedule_enabled:
            await worker.start()

        logger.info("%s %s started", settings.app_name, settings.app_version)
        try:
            yield
        finally:
            await worker.stop()
            await pipeline.close()
            if remote_store is not None:
                await remote_store.close()
            if engine is None:
                db_engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        description="Relays chat platform events to per-channel webhooks",
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.add_exception_handler(RelayError, relay_error_handler)

    # Include API routers
    app.include_router(events_router, prefix="/api/v1")
    app.include_router(bindings_router, prefix="/api/v1")
    app.include_router(snapshots_router, prefix="/api/v1")
    app.include_router(system_router, prefix="/api/v1")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint to verify the service is running."""
        return {"status": "ok"}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("webhook_relay.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
