"""Operator utility for registry snapshots.

Usage::

    python -m webhook_relay.scripts.snapshot list [--remote]
    python -m webhook_relay.scripts.snapshot backup
    python -m webhook_relay.scripts.snapshot latest [--remote]
    python -m webhook_relay.scripts.snapshot details <name> [--remote]
    python -m webhook_relay.scripts.snapshot restore [<name>] [--remote] [--replace --yes]
    python -m webhook_relay.scripts.snapshot restore-url <admins> <guilds> <webhooks> [--replace --yes]
"""
from __future__ import annotations

import argparse
import asyncio
import sys

from webhook_relay.core.errors import RelayError
from webhook_relay.core.log_config import configure_logging
from webhook_relay.core.settings import settings
from webhook_relay.db.session import build_engine, build_session_factory, create_tables
from webhook_relay.schemas.snapshot import ImportMode, ImportReport
from webhook_relay.services.registry import RegistryStore
from webhook_relay.services.snapshot_service import (
    LOCAL_SOURCE,
    REMOTE_SOURCE,
    SnapshotService,
)
from webhook_relay.services.snapshot_store import (
    LocalSnapshotStore,
    UrlSnapshotSource,
    build_remote_store,
)


def build_service() -> SnapshotService:
    engine = build_engine()
    create_tables(engine)
    session_factory = build_session_factory(engine)
    return SnapshotService(
        session_factory,
        RegistryStore(session_factory),
        LocalSnapshotStore(settings.snapshot_dir, settings.snapshot_retention),
        build_remote_store(),
    )


def print_report(report: ImportReport) -> None:
    print(f"[snapshot] restored {report.snapshot} ({report.mode.value})")
    for table, result in report.tables.items():
        print(
            f"  {table}: {result.inserted} inserted, "
            f"{result.skipped} skipped, {result.failed} failed"
        )


async def run(args: argparse.Namespace) -> int:
    service = build_service()
    source = REMOTE_SOURCE if getattr(args, "remote", False) else LOCAL_SOURCE
    mode = ImportMode.REPLACE if getattr(args, "replace", False) else ImportMode.MERGE
    if mode is ImportMode.REPLACE and not args.yes:
        print(
            "[snapshot] ERROR: --replace deletes all current data; pass --yes to confirm",
            file=sys.stderr,
        )
        return 2

    try:
        if args.command == "list":
            names = await service.list_snapshots(source)
            print(f"[snapshot] {len(names)} snapshots in {source} storage")
            for index, name in enumerate(names, start=1):
                print(f"  {index}. {name}")
        elif args.command == "backup":
            snapshot = await service.backup()
            meta = snapshot.metadata
            print(
                f"[snapshot] created {snapshot.name}: {meta.binding_count} webhooks, "
                f"{meta.server_count} servers, {meta.admin_count} admins"
            )
        elif args.command == "latest":
            print(await service.latest(source))
        elif args.command == "details":
            meta = await service.details(args.name, source)
            print(f"[snapshot] {args.name}")
            print(f"  exported:  {meta.export_timestamp.isoformat()}")
            print(f"  webhooks:  {meta.binding_count}")
            print(f"  servers:   {meta.server_count}")
            print(f"  admins:    {meta.admin_count}")
            print(f"  format:    v{meta.format_version}")
        elif args.command == "restore":
            print_report(await service.restore(args.name, mode, source))
        elif args.command == "restore-url":
            url_source = UrlSnapshotSource(args.admins_url, args.guilds_url, args.webhooks_url)
            try:
                snapshot = await url_source.fetch()
            finally:
                await url_source.close()
            print_report(await service.restore_snapshot(snapshot, mode))
    except RelayError as exc:
        print(f"[snapshot] ERROR: {exc}", file=sys.stderr)
        return 1
    finally:
        if service.remote_store is not None:
            await service.remote_store.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Back up and restore the webhook registry")
    commands = parser.add_subparsers(dest="command", required=True)

    list_cmd = commands.add_parser("list", help="List snapshots, newest first")
    list_cmd.add_argument("--remote", action="store_true", help="Use GitHub storage")

    commands.add_parser("backup", help="Export the registry now")

    latest_cmd = commands.add_parser("latest", help="Print the newest snapshot name")
    latest_cmd.add_argument("--remote", action="store_true", help="Use GitHub storage")

    details_cmd = commands.add_parser("details", help="Show a snapshot's metadata")
    details_cmd.add_argument("name")
    details_cmd.add_argument("--remote", action="store_true", help="Use GitHub storage")

    restore_cmd = commands.add_parser("restore", help="Import a snapshot (latest by default)")
    restore_cmd.add_argument("name", nargs="?", default=None)
    restore_cmd.add_argument("--remote", action="store_true", help="Use GitHub storage")

    url_cmd = commands.add_parser("restore-url", help="Import tables from three raw URLs")
    url_cmd.add_argument("admins_url")
    url_cmd.add_argument("guilds_url")
    url_cmd.add_argument("webhooks_url")

    for sub in (restore_cmd, url_cmd):
        sub.add_argument(
            "--replace",
            action="store_true",
            help="Delete all current registry rows before importing.",
        )
        sub.add_argument("--yes", action="store_true", help="Confirm a --replace restore.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
