"""System endpoints for the webhook relay."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from webhook_relay.core.settings import settings

# Configure logger for this module
logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])


@router.get("/health")
async def get_system_health(request: Request) -> dict[str, object]:
    """Component health for monitoring.

    Returns:
        Dictionary with overall status, database and worker state, and
        in-flight delivery count
    """
    try:
        with request.app.state.session_factory() as db:
            db.execute(text("SELECT 1"))
        db_status = "healthy"
    except SQLAlchemyError as e:
        logger.warning("Database health check failed: %s", e)
        db_status = f"unhealthy: {e}"

    worker = request.app.state.snapshot_worker
    return {
        "status": "healthy" if db_status == "healthy" else "unhealthy",
        "timestamp": int(time.time()),
        "components": {
            "database": db_status,
            "snapshot_worker": "running" if worker and worker.running else "stopped",
            "remote_snapshots": "enabled" if settings.remote_snapshots_enabled else "disabled",
        },
        "in_flight_deliveries": request.app.state.pipeline.in_flight,
        "version": settings.app_version,
    }
