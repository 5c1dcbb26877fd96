"""Snapshot backup and restore endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status

from webhook_relay.api.v1.dependencies import AdminClaimsDep, SnapshotServiceDep
from webhook_relay.core.errors import SnapshotTransportError
from webhook_relay.schemas.snapshot import (
    BackupResponse,
    ImportMode,
    ImportReport,
    RestoreRequest,
    SnapshotListResponse,
)

# Configure logger for this module
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/snapshots", tags=["snapshots"])


@router.get("", response_model=SnapshotListResponse)
async def list_snapshots(
    snapshot_service: SnapshotServiceDep,
    _claims: AdminClaimsDep,
    source: str = "local",
) -> SnapshotListResponse:
    if source not in ("local", "remote"):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="source must be 'local' or 'remote'",
        )
    names = await snapshot_service.list_snapshots(source)
    return SnapshotListResponse(source=source, snapshots=names)


@router.post("", response_model=BackupResponse, status_code=status.HTTP_201_CREATED)
async def create_backup(
    snapshot_service: SnapshotServiceDep,
    _claims: AdminClaimsDep,
) -> BackupResponse:
    """Export the registry now."""
    snapshot = await snapshot_service.backup()
    return BackupResponse(
        name=snapshot.name,
        metadata=snapshot.metadata,
        published_remotely=snapshot_service.remote_store is not None,
    )


@router.post("/restore", response_model=ImportReport)
async def restore_snapshot(
    body: RestoreRequest,
    snapshot_service: SnapshotServiceDep,
    claims: AdminClaimsDep,
) -> ImportReport:
    """Import a snapshot; ``replace`` wipes the registry and needs ``confirm``."""
    if body.mode is ImportMode.REPLACE and not body.confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Replace restore deletes all current data; set confirm=true",
        )
    if body.source == "remote" and snapshot_service.remote_store is None:
        raise SnapshotTransportError("Remote snapshot storage is not configured")
    logger.warning(
        "Restore of %s requested by %s (mode=%s, source=%s)",
        body.name or "latest snapshot",
        claims.get("sub", "unknown"),
        body.mode.value,
        body.source,
    )
    return await snapshot_service.restore(body.name, body.mode, body.source)
