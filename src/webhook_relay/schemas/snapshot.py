"""Snapshot-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

FORMAT_VERSION = 2


class ImportMode(str, Enum):
    """How a snapshot is loaded into the registry."""

    MERGE = "merge"      # insert, never overwrite existing keys
    REPLACE = "replace"  # wipe all registry tables first


class SnapshotMetadata(BaseModel):
    """Descriptor stored next to the table files as ``metadata.json``.

    Older backups used camelCase keys; those are accepted on read.
    """

    model_config = ConfigDict(populate_by_name=True)

    export_timestamp: datetime = Field(
        validation_alias=AliasChoices("export_timestamp", "timestamp"),
    )
    binding_count: int = Field(
        default=0, validation_alias=AliasChoices("binding_count", "webhookCount")
    )
    server_count: int = Field(
        default=0, validation_alias=AliasChoices("server_count", "guildCount")
    )
    admin_count: int = Field(
        default=0, validation_alias=AliasChoices("admin_count", "adminCount")
    )
    format_version: int = Field(
        default=1, validation_alias=AliasChoices("format_version", "version")
    )

    @field_validator("format_version", mode="before")
    @classmethod
    def _coerce_version(cls, value: Any) -> int:
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return 1

    @field_validator("binding_count", "server_count", "admin_count", mode="before")
    @classmethod
    def _coerce_count(cls, value: Any) -> int:
        if value in (None, "", "N/A"):
            return 0
        return value


class TableImportResult(BaseModel):
    """Per-table outcome of an import."""

    inserted: int = 0
    skipped: int = 0
    failed: int = 0


class ImportReport(BaseModel):
    """Outcome of loading one snapshot."""

    snapshot: str
    mode: ImportMode
    tables: dict[str, TableImportResult] = Field(default_factory=dict)

    @property
    def inserted_total(self) -> int:
        return sum(result.inserted for result in self.tables.values())

    @property
    def failed_total(self) -> int:
        return sum(result.failed for result in self.tables.values())


class SnapshotListResponse(BaseModel):
    """Snapshot names in one store, newest first."""

    source: str
    snapshots: list[str]


class BackupResponse(BaseModel):
    """Result of an on-demand backup."""

    name: str
    metadata: SnapshotMetadata
    published_remotely: bool


class RestoreRequest(BaseModel):
    """Body of ``POST /snapshots/restore``."""

    name: str | None = None
    mode: ImportMode = ImportMode.MERGE
    source: str = Field(default="local", pattern="^(local|remote)$")
    confirm: bool = False
