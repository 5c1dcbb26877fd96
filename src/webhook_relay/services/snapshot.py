"""Snapshot export and import for the webhook registry.

A snapshot is three flat tables plus a metadata descriptor:

- ``server_admins.csv``, ``guilds.csv`` and ``channel_webhooks.csv``, in that
  dependency order. The first line is the header; each following line is one
  row. Strings are double-quoted with embedded quotes doubled, booleans are
  ``true``/``false``, timestamps ISO-8601, integers decimal, NULL empty.
- ``metadata.json`` with export time, row counts and format version.

Import runs in one transaction. ``MERGE`` inserts with skip-on-conflict and
never overwrites a row; ``REPLACE`` deletes every registry row first. A row
that fails to parse is logged and counted, never fatal.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any

from pydantic import ValidationError
from sqlalchemy import Table, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from webhook_relay.core.errors import SnapshotParseError, StorageError
from webhook_relay.db.time import ensure_aware, utcnow
from webhook_relay.models import Administrator, ChannelBinding, Server
from webhook_relay.schemas.snapshot import (
    FORMAT_VERSION,
    ImportMode,
    ImportReport,
    SnapshotMetadata,
    TableImportResult,
)
from webhook_relay.services.registry import dialect_insert

# Configure logger for this module
logger = logging.getLogger(__name__)

METADATA_FILENAME = "metadata.json"
SNAPSHOT_PREFIX = "backup-"
RESTORED_DISABLED_REASON = "Disabled before snapshot restore"

_SNAPSHOT_NAME_RE = re.compile(
    r"^backup-(\d{4}-\d{2}-\d{2})T(\d{2})-(\d{2})-(\d{2})-(\d{3})Z$"
)
# e.g. "Tue Aug 05 2025 07:42:23 GMT+0000 (Coordinated Universal Time)"
_JS_DATE_FORMAT = "%a %b %d %Y %H:%M:%S GMT%z"


class ColumnType(Enum):
    STRING = "string"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"


@dataclass(frozen=True)
class ColumnSpec:
    """One snapshot column; ``default`` replaces missing or unparseable values.

    Integers below ``minimum`` count as unparseable.
    """

    name: str
    type: ColumnType
    default: Any = None
    nullable: bool = True
    minimum: int | None = None


@dataclass(frozen=True)
class TableSpec:
    """Fixed schema of one snapshot table."""

    name: str
    table: Table
    key: str
    columns: tuple[ColumnSpec, ...]
    required: tuple[str, ...]

    @property
    def filename(self) -> str:
        return f"{self.name}.csv"

    @property
    def header(self) -> list[str]:
        return [column.name for column in self.columns]


ADMINS_TABLE = TableSpec(
    name="server_admins",
    table=Administrator.__table__,  # type: ignore[arg-type]
    key="user_id",
    columns=(
        ColumnSpec("user_id", ColumnType.STRING),
        ColumnSpec("username", ColumnType.STRING, default="unknown"),
        ColumnSpec("display_name", ColumnType.STRING),
        ColumnSpec("first_seen", ColumnType.TIMESTAMP, nullable=False),
        ColumnSpec("last_seen", ColumnType.TIMESTAMP, nullable=False),
        ColumnSpec("interaction_count", ColumnType.INTEGER, default=1, minimum=1),
    ),
    required=("user_id",),
)

SERVERS_TABLE = TableSpec(
    name="guilds",
    table=Server.__table__,  # type: ignore[arg-type]
    key="id",
    columns=(
        ColumnSpec("id", ColumnType.STRING),
        ColumnSpec("name", ColumnType.STRING),
        ColumnSpec("added_by_admin_id", ColumnType.STRING),
        ColumnSpec("created_at", ColumnType.TIMESTAMP, nullable=False),
        ColumnSpec("updated_at", ColumnType.TIMESTAMP, nullable=False),
    ),
    required=("id", "name"),
)

BINDINGS_TABLE = TableSpec(
    name="channel_webhooks",
    table=ChannelBinding.__table__,  # type: ignore[arg-type]
    key="channel_id",
    columns=(
        ColumnSpec("channel_id", ColumnType.STRING),
        ColumnSpec("webhook_url", ColumnType.STRING),
        ColumnSpec("guild_id", ColumnType.STRING),
        ColumnSpec("failure_count", ColumnType.INTEGER, default=0, minimum=0),
        ColumnSpec("last_failure_at", ColumnType.TIMESTAMP),
        ColumnSpec("is_active", ColumnType.BOOLEAN, default=True),
        ColumnSpec("disabled_reason", ColumnType.STRING),
        ColumnSpec("registered_by_admin_id", ColumnType.STRING),
        ColumnSpec("send_bot_messages", ColumnType.BOOLEAN, default=False),
        ColumnSpec("created_at", ColumnType.TIMESTAMP, nullable=False),
        ColumnSpec("updated_at", ColumnType.TIMESTAMP, nullable=False),
    ),
    required=("channel_id", "webhook_url", "guild_id"),
)

# Dependency order: bindings and servers reference administrators.
TABLES: tuple[TableSpec, ...] = (ADMINS_TABLE, SERVERS_TABLE, BINDINGS_TABLE)


@dataclass
class Snapshot:
    """An exported registry: encoded tables keyed by filename, plus metadata."""

    name: str
    metadata: SnapshotMetadata
    tables: dict[str, str] = field(default_factory=dict)

    def files(self) -> dict[str, str]:
        """Return every file of the snapshot, metadata included."""
        files = dict(self.tables)
        files[METADATA_FILENAME] = self.metadata.model_dump_json(indent=2) + "\n"
        return files

    @classmethod
    def from_files(cls, name: str, files: Mapping[str, str | None]) -> Snapshot:
        """Rebuild a snapshot from stored files.

        Missing or unreadable metadata is reconstructed from the table row
        counts.
        """
        tables = {
            spec.filename: text
            for spec in TABLES
            if (text := files.get(spec.filename)) is not None
        }
        metadata: SnapshotMetadata | None = None
        raw_metadata = files.get(METADATA_FILENAME)
        if raw_metadata:
            try:
                metadata = SnapshotMetadata.model_validate(json.loads(raw_metadata))
            except (ValueError, ValidationError) as exc:
                logger.warning(
                    "Invalid metadata in snapshot %s, rebuilding from tables: %s", name, exc
                )
        if metadata is None:
            metadata = SnapshotMetadata(
                export_timestamp=snapshot_time(name) or utcnow(),
                admin_count=count_records(tables.get(ADMINS_TABLE.filename)),
                server_count=count_records(tables.get(SERVERS_TABLE.filename)),
                binding_count=count_records(tables.get(BINDINGS_TABLE.filename)),
                format_version=FORMAT_VERSION,
            )
        return cls(name=name, metadata=metadata, tables=tables)


# ----------------------------------------------------------------------
# Naming
# ----------------------------------------------------------------------


def snapshot_name(moment: datetime) -> str:
    """Return ``backup-YYYY-MM-DDTHH-MM-SS-mmmZ`` for ``moment``."""
    moment = ensure_aware(moment).astimezone(UTC)
    return f"{SNAPSHOT_PREFIX}{moment:%Y-%m-%dT%H-%M-%S}-{moment.microsecond // 1000:03d}Z"


def snapshot_time(name: str) -> datetime | None:
    """Parse the timestamp embedded in a snapshot name."""
    match = _SNAPSHOT_NAME_RE.match(name)
    if not match:
        return None
    day, hour, minute, second, millis = match.groups()
    return datetime.fromisoformat(f"{day}T{hour}:{minute}:{second}.{millis}+00:00")


def sort_snapshot_names(names: Iterable[str]) -> list[str]:
    """Order snapshot names newest first; unparseable names sort last."""
    epoch = datetime.min.replace(tzinfo=UTC)
    return sorted(
        (name for name in names if name.startswith(SNAPSHOT_PREFIX)),
        key=lambda name: (snapshot_time(name) or epoch, name),
        reverse=True,
    )


# ----------------------------------------------------------------------
# Encoding
# ----------------------------------------------------------------------


def encode_value(value: Any, column_type: ColumnType) -> str:
    """Encode one field of a snapshot row."""
    if value is None:
        return ""
    if column_type is ColumnType.BOOLEAN:
        return "true" if value else "false"
    if column_type is ColumnType.TIMESTAMP:
        return ensure_aware(value).isoformat()
    if column_type is ColumnType.INTEGER:
        return str(int(value))
    text = str(value)
    return '"' + text.replace('"', '""') + '"'


def encode_table(spec: TableSpec, rows: Iterable[Mapping[str, Any]]) -> str:
    """Encode rows of ``spec``; an empty table yields just the header line."""
    lines = [",".join(spec.header)]
    for row in rows:
        lines.append(
            ",".join(encode_value(row[column.name], column.type) for column in spec.columns)
        )
    return "\n".join(lines) + "\n"


# ----------------------------------------------------------------------
# Decoding
# ----------------------------------------------------------------------


def read_records(text: str | None) -> tuple[list[str], list[list[str]]]:
    """Split table text into its header and non-blank data rows."""
    if not text:
        return [], []
    reader = csv.reader(io.StringIO(text.lstrip("﻿")))
    rows = [row for row in reader if any(value.strip() for value in row)]
    if not rows:
        return [], []
    header = [name.strip() for name in rows[0]]
    return header, rows[1:]


def count_records(text: str | None) -> int:
    try:
        return len(read_records(text)[1])
    except csv.Error:
        return 0


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse ISO-8601, RFC 2822 or JavaScript ``Date.toString`` timestamps."""
    if not value or value in ("null", "undefined"):
        return None
    value = value.strip()
    try:
        return ensure_aware(datetime.fromisoformat(value))
    except ValueError:
        pass
    try:
        return datetime.strptime(value.split(" (", 1)[0], _JS_DATE_FORMAT)
    except ValueError:
        pass
    try:
        return ensure_aware(parsedate_to_datetime(value))
    except (TypeError, ValueError, IndexError):
        return None


def _parse_integer(value: str | None, default: int, minimum: int | None = None) -> int:
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if minimum is not None and parsed < minimum:
        return default
    return parsed


def _parse_boolean(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return default


def parse_record(
    spec: TableSpec,
    header: list[str],
    values: list[str],
    now: datetime,
) -> dict[str, Any]:
    """Convert one raw row into column values ready for insertion.

    Raises:
        SnapshotParseError: a required key is missing or the row is wider
            than the header.
    """
    if len(values) > len(header):
        raise SnapshotParseError(
            f"{spec.name}: expected at most {len(header)} fields, got {len(values)}"
        )
    raw: dict[str, str | None] = {
        name: (values[index] if index < len(values) and values[index] != "" else None)
        for index, name in enumerate(header)
    }

    missing = [name for name in spec.required if not raw.get(name)]
    if missing:
        raise SnapshotParseError(f"{spec.name}: missing required {', '.join(missing)}")

    record: dict[str, Any] = {}
    for column in spec.columns:
        value = raw.get(column.name)
        if column.type is ColumnType.INTEGER:
            record[column.name] = _parse_integer(value, column.default, column.minimum)
        elif column.type is ColumnType.BOOLEAN:
            record[column.name] = _parse_boolean(value, column.default)
        elif column.type is ColumnType.TIMESTAMP:
            parsed = parse_timestamp(value)
            if parsed is None and value is not None:
                logger.debug("Could not parse %s.%s value %r", spec.name, column.name, value)
            record[column.name] = parsed if parsed is not None or column.nullable else now
        else:
            record[column.name] = value if value is not None else column.default

    if spec is BINDINGS_TABLE and not record["is_active"] and not record["disabled_reason"]:
        record["disabled_reason"] = RESTORED_DISABLED_REASON
    return record


# ----------------------------------------------------------------------
# Export / import
# ----------------------------------------------------------------------


def export_snapshot(
    session_factory: sessionmaker[Session],
    exported_at: datetime | None = None,
) -> Snapshot:
    """Read all registry tables into a snapshot.

    This is a point-in-time read per table; concurrent deliveries are not
    blocked, so the tables are recent but not mutually consistent.
    """
    exported_at = exported_at or utcnow()
    tables: dict[str, str] = {}
    counts: dict[str, int] = {}
    try:
        with session_factory() as db:
            for spec in TABLES:
                columns = [spec.table.c[column.name] for column in spec.columns]
                rows = db.execute(
                    select(*columns).order_by(spec.table.c[spec.key])
                ).mappings().all()
                tables[spec.filename] = encode_table(spec, rows)
                counts[spec.name] = len(rows)
    except SQLAlchemyError as exc:
        raise StorageError(f"Snapshot export failed: {exc}") from exc

    metadata = SnapshotMetadata(
        export_timestamp=exported_at,
        binding_count=counts[BINDINGS_TABLE.name],
        server_count=counts[SERVERS_TABLE.name],
        admin_count=counts[ADMINS_TABLE.name],
        format_version=FORMAT_VERSION,
    )
    name = snapshot_name(exported_at)
    logger.info(
        "Exported snapshot %s (%d webhooks, %d servers, %d admins)",
        name,
        metadata.binding_count,
        metadata.server_count,
        metadata.admin_count,
    )
    return Snapshot(name=name, metadata=metadata, tables=tables)


def _import_table(
    db: Session,
    spec: TableSpec,
    text: str | None,
    now: datetime,
) -> TableImportResult:
    result = TableImportResult()
    if text is None:
        logger.warning("Snapshot has no %s, skipping table", spec.filename)
        return result

    try:
        header, rows = read_records(text)
    except csv.Error as exc:
        logger.warning("Could not read %s: %s", spec.filename, exc)
        result.failed += 1
        return result

    for line_number, values in enumerate(rows, start=2):
        try:
            record = parse_record(spec, header, values, now)
        except SnapshotParseError as exc:
            logger.warning("Skipping %s line %d: %s", spec.filename, line_number, exc)
            result.failed += 1
            continue

        stmt = (
            dialect_insert(db, spec.table)
            .values(**record)
            .on_conflict_do_nothing(index_elements=[spec.key])
            .returning(spec.table.c[spec.key])
        )
        if db.execute(stmt).scalar_one_or_none() is None:
            result.skipped += 1
        else:
            result.inserted += 1

    logger.info(
        "Restored %d %s records (%d skipped, %d failed)",
        result.inserted,
        spec.name,
        result.skipped,
        result.failed,
    )
    return result


def import_snapshot(
    session_factory: sessionmaker[Session],
    snapshot: Snapshot,
    mode: ImportMode = ImportMode.MERGE,
) -> ImportReport:
    """Load ``snapshot`` into the registry.

    ``REPLACE`` irreversibly clears all three tables first and must only be
    triggered by an operator. A delivery racing a replace may update a row
    that is about to be deleted; that is accepted.
    """
    report = ImportReport(snapshot=snapshot.name, mode=mode)
    now = utcnow()
    try:
        with session_factory() as db, db.begin():
            if mode is ImportMode.REPLACE:
                for spec in reversed(TABLES):
                    db.execute(delete(spec.table))
                logger.warning("Cleared registry tables before restoring %s", snapshot.name)
            for spec in TABLES:
                report.tables[spec.name] = _import_table(
                    db, spec, snapshot.tables.get(spec.filename), now
                )
    except SQLAlchemyError as exc:
        raise StorageError(f"Snapshot import of {snapshot.name} failed: {exc}") from exc
    return report
