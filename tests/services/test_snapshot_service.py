import asyncio
from datetime import UTC, datetime
from pathlib import Path

import pytest
from sqlalchemy import delete
from sqlalchemy.orm import Session, sessionmaker

from webhook_relay.core.errors import (
    SnapshotInProgressError,
    SnapshotNotFoundError,
    SnapshotTransportError,
)
from webhook_relay.schemas.snapshot import ImportMode
from webhook_relay.services.registry import RegistryStore
from webhook_relay.services.snapshot import TABLES, export_snapshot
from webhook_relay.services.snapshot_service import (
    REMOTE_SOURCE,
    SnapshotService,
    SnapshotWorker,
)
from webhook_relay.services.snapshot_store import LocalSnapshotStore


def _empty_registry(session_factory: sessionmaker[Session]) -> None:
    with session_factory() as db, db.begin():
        for spec in reversed(TABLES):
            db.execute(delete(spec.table))


@pytest.fixture
def local_store(snapshot_dir: Path) -> LocalSnapshotStore:
    return LocalSnapshotStore(snapshot_dir, retention=2)


@pytest.fixture
def remote_store(tmp_path: Path) -> LocalSnapshotStore:
    # Same interface as the GitHub store, backed by a second directory.
    return LocalSnapshotStore(tmp_path / "remote")


@pytest.fixture
def service(
    session_factory: sessionmaker[Session],
    registry: RegistryStore,
    local_store: LocalSnapshotStore,
) -> SnapshotService:
    return SnapshotService(session_factory, registry, local_store)


@pytest.mark.asyncio
async def test_backup_writes_local_copy(
    service: SnapshotService, local_store: LocalSnapshotStore, bound_channel
):
    bound_channel()

    snapshot = await service.backup()

    assert await local_store.list_names() == [snapshot.name]
    assert snapshot.metadata.binding_count == 1
    assert (await service.details(snapshot.name)).server_count == 1


@pytest.mark.asyncio
async def test_backup_prunes_old_local_copies(
    mocker, service: SnapshotService, local_store: LocalSnapshotStore
):
    names = []
    for second in range(3):
        mocker.patch(
            "webhook_relay.services.snapshot.utcnow",
            return_value=datetime(2025, 1, 11, 3, 0, second, tzinfo=UTC),
        )
        names.append((await service.backup()).name)

    assert await local_store.list_names() == [names[2], names[1]]


@pytest.mark.asyncio
async def test_restore_latest_into_empty_registry(
    service: SnapshotService,
    registry: RegistryStore,
    bound_channel,
):
    bound_channel()
    await service.backup()
    registry.unbind("200")

    report = await service.restore()

    assert report.mode is ImportMode.MERGE
    assert report.tables["channel_webhooks"].inserted == 1
    assert registry.lookup_active("200") is not None


@pytest.mark.asyncio
async def test_latest_without_snapshots(service: SnapshotService):
    with pytest.raises(SnapshotNotFoundError):
        await service.latest()
    with pytest.raises(SnapshotNotFoundError):
        await service.restore()


@pytest.mark.asyncio
async def test_remote_source_requires_configuration(service: SnapshotService):
    with pytest.raises(SnapshotTransportError):
        await service.list_snapshots(REMOTE_SOURCE)


@pytest.mark.asyncio
async def test_concurrent_operation_is_rejected(service: SnapshotService):
    async with service._lock:
        assert service.busy is True
        with pytest.raises(SnapshotInProgressError):
            await service.backup()
        with pytest.raises(SnapshotInProgressError):
            await service.restore("backup-2025-01-11T03-00-00-000Z")


@pytest.mark.asyncio
async def test_remote_publish_failure_keeps_local_copy(
    mocker,
    session_factory: sessionmaker[Session],
    registry: RegistryStore,
    local_store: LocalSnapshotStore,
):
    remote = mocker.AsyncMock()
    remote.publish.side_effect = SnapshotTransportError("GitHub unavailable")
    service = SnapshotService(session_factory, registry, local_store, remote)

    with pytest.raises(SnapshotTransportError):
        await service.backup()

    assert len(await local_store.list_names()) == 1
    assert service.busy is False


@pytest.mark.asyncio
async def test_restore_if_empty_prefers_remote(
    session_factory: sessionmaker[Session],
    registry: RegistryStore,
    local_store: LocalSnapshotStore,
    remote_store: LocalSnapshotStore,
    bound_channel,
):
    bound_channel("300")
    remote_snapshot = export_snapshot(session_factory, datetime(2025, 1, 10, tzinfo=UTC))
    await remote_store.publish(remote_snapshot)
    _empty_registry(session_factory)
    bound_channel("400")
    await local_store.publish(export_snapshot(session_factory, datetime(2025, 1, 11, tzinfo=UTC)))
    _empty_registry(session_factory)
    service = SnapshotService(session_factory, registry, local_store, remote_store)

    report = await service.restore_if_empty()

    assert report is not None
    assert report.snapshot == remote_snapshot.name
    assert registry.lookup_active("300") is not None
    assert registry.lookup_any("400") is None


@pytest.mark.asyncio
async def test_restore_if_empty_falls_back_to_local(
    mocker,
    session_factory: sessionmaker[Session],
    registry: RegistryStore,
    local_store: LocalSnapshotStore,
    bound_channel,
):
    bound_channel()
    await local_store.publish(export_snapshot(session_factory))
    _empty_registry(session_factory)
    remote = mocker.AsyncMock()
    remote.list_names.side_effect = SnapshotTransportError("GitHub unavailable")
    service = SnapshotService(session_factory, registry, local_store, remote)

    report = await service.restore_if_empty()

    assert report is not None
    assert registry.lookup_active("200") is not None


@pytest.mark.asyncio
async def test_restore_if_empty_skips_populated_registry(
    service: SnapshotService, bound_channel
):
    bound_channel()
    await service.backup()

    assert await service.restore_if_empty() is None


@pytest.mark.asyncio
async def test_restore_if_empty_without_snapshots(service: SnapshotService):
    assert await service.restore_if_empty() is None


@pytest.mark.asyncio
async def test_worker_runs_backups_until_stopped(mocker, service: SnapshotService):
    backup = mocker.patch.object(service, "backup", new=mocker.AsyncMock())
    worker = SnapshotWorker(service, interval_seconds=0.1)

    await worker.start()
    assert worker.running is True
    await asyncio.sleep(0.35)
    await worker.stop()

    assert worker.running is False
    assert backup.await_count >= 1


@pytest.mark.asyncio
async def test_worker_survives_failures(mocker, service: SnapshotService):
    outcomes = [
        SnapshotTransportError("down"),
        SnapshotInProgressError("busy"),
        ValueError("unexpected column"),
    ]
    outcomes += [mocker.MagicMock(name="snapshot") for _ in range(20)]
    backup = mocker.patch.object(
        service, "backup", new=mocker.AsyncMock(side_effect=outcomes)
    )
    worker = SnapshotWorker(service, interval_seconds=0.1)

    await worker.start()
    await asyncio.sleep(0.6)
    await worker.stop()

    assert backup.await_count >= 4
    assert worker.running is False
