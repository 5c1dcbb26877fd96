"""Snapshot orchestration: backups, restores and the periodic backup worker."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from sqlalchemy.orm import Session, sessionmaker

from webhook_relay.core.errors import (
    RelayError,
    SnapshotInProgressError,
    SnapshotNotFoundError,
    SnapshotTransportError,
)
from webhook_relay.core.settings import settings
from webhook_relay.schemas.snapshot import ImportMode, ImportReport, SnapshotMetadata
from webhook_relay.services.registry import RegistryStore
from webhook_relay.services.snapshot import Snapshot, export_snapshot, import_snapshot
from webhook_relay.services.snapshot_store import GitHubSnapshotStore, LocalSnapshotStore

# Configure logger for this module
logger = logging.getLogger(__name__)

LOCAL_SOURCE = "local"
REMOTE_SOURCE = "remote"


class SnapshotSource(Protocol):
    async def list_names(self) -> list[str]: ...

    async def fetch(self, name: str) -> Snapshot: ...


class SnapshotService:
    """Runs exports and imports one at a time.

    A second request while one is running is rejected with
    ``SnapshotInProgressError`` instead of being queued.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: RegistryStore,
        local_store: LocalSnapshotStore,
        remote_store: GitHubSnapshotStore | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.registry = registry
        self.local_store = local_store
        self.remote_store = remote_store
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _claim(self, operation: str) -> None:
        if self._lock.locked():
            raise SnapshotInProgressError(f"Cannot {operation}: a snapshot operation is running")

    def _store(self, source: str) -> SnapshotSource:
        if source == LOCAL_SOURCE:
            return self.local_store
        if source == REMOTE_SOURCE:
            if self.remote_store is None:
                raise SnapshotTransportError("Remote snapshot storage is not configured")
            return self.remote_store
        raise ValueError(f"Unknown snapshot source: {source}")

    async def backup(self) -> Snapshot:
        """Export the registry, keep it locally and publish it remotely.

        Raises:
            SnapshotTransportError: remote publishing failed; the local copy
                has already been written.
        """
        self._claim("back up")
        async with self._lock:
            snapshot = await asyncio.to_thread(export_snapshot, self.session_factory)
            await self.local_store.publish(snapshot)
            await self.local_store.prune()
            if self.remote_store is not None:
                try:
                    await self.remote_store.publish(snapshot)
                except SnapshotTransportError:
                    logger.warning(
                        "Remote publish of %s failed, local copy kept", snapshot.name
                    )
                    raise
            return snapshot

    async def list_snapshots(self, source: str = LOCAL_SOURCE) -> list[str]:
        return await self._store(source).list_names()

    async def latest(self, source: str = LOCAL_SOURCE) -> str:
        names = await self.list_snapshots(source)
        if not names:
            raise SnapshotNotFoundError(f"No snapshots available in {source} storage")
        return names[0]

    async def details(self, name: str, source: str = LOCAL_SOURCE) -> SnapshotMetadata:
        snapshot = await self._store(source).fetch(name)
        return snapshot.metadata

    async def restore(
        self,
        name: str | None = None,
        mode: ImportMode = ImportMode.MERGE,
        source: str = LOCAL_SOURCE,
    ) -> ImportReport:
        """Import snapshot ``name``, or the newest one when omitted."""
        self._claim("restore")
        async with self._lock:
            store = self._store(source)
            if name is None:
                name = await self.latest(source)
            snapshot = await store.fetch(name)
            return await self._import(snapshot, mode)

    async def restore_snapshot(
        self,
        snapshot: Snapshot,
        mode: ImportMode = ImportMode.MERGE,
    ) -> ImportReport:
        """Import an already-fetched snapshot, e.g. one read from raw URLs."""
        self._claim("restore")
        async with self._lock:
            return await self._import(snapshot, mode)

    async def _import(self, snapshot: Snapshot, mode: ImportMode) -> ImportReport:
        logger.info(
            "Restoring %s (%s): %d webhooks, %d servers, %d admins exported at %s",
            snapshot.name,
            mode.value,
            snapshot.metadata.binding_count,
            snapshot.metadata.server_count,
            snapshot.metadata.admin_count,
            snapshot.metadata.export_timestamp.isoformat(),
        )
        report = await asyncio.to_thread(
            import_snapshot, self.session_factory, snapshot, mode
        )
        logger.info(
            "Restore of %s finished: %d rows inserted, %d rows failed",
            snapshot.name,
            report.inserted_total,
            report.failed_total,
        )
        return report

    async def restore_if_empty(self) -> ImportReport | None:
        """Cold-start recovery: merge the newest snapshot into an empty registry.

        Remote storage is preferred; local storage is the fallback. Returns
        ``None`` when the registry already has rows or no snapshot exists.
        """
        if not await asyncio.to_thread(self.registry.is_empty):
            logger.info("Registry already has data, skipping restore")
            return None

        sources = [LOCAL_SOURCE]
        if self.remote_store is not None:
            sources.insert(0, REMOTE_SOURCE)

        for source in sources:
            try:
                name = await self.latest(source)
            except SnapshotNotFoundError:
                logger.info("No %s snapshots found", source)
                continue
            except SnapshotTransportError as exc:
                logger.warning("Could not list %s snapshots: %s", source, exc)
                continue
            logger.info("Registry is empty, restoring %s from %s storage", name, source)
            return await self.restore(name, ImportMode.MERGE, source)

        logger.info("No snapshot available, starting with an empty registry")
        return None


class SnapshotWorker:
    """Periodically backs up the registry in the background."""

    def __init__(self, service: SnapshotService, interval_seconds: float | None = None) -> None:
        self.service = service
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else float(settings.snapshot_interval_seconds)
        )
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background backup loop."""

        if not self.running:
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background backup loop."""

        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True when asked to stop."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    async def _run(self) -> None:
        interval = max(0.1, self.interval_seconds)

        while not await self._wait(interval):
            try:
                snapshot = await self.service.backup()
            except SnapshotInProgressError:
                logger.info("Scheduled backup skipped, another snapshot operation is running")
                continue
            except (RelayError, OSError) as e:
                logger.warning("SnapshotWorker backup failed: %s", e)
                continue
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.error(
                    "SnapshotWorker encountered data processing error: %s", e, exc_info=True
                )
                continue
            logger.info("Scheduled backup %s completed", snapshot.name)
