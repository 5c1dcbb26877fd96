"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .binding import (
    AdminInfo,
    AutomatedOriginResponse,
    BindingResponse,
    BindRequest,
    ServerUpsert,
    StatsResponse,
)
from .event import EventAccepted, GatewayEventIn
from .snapshot import (
    BackupResponse,
    ImportMode,
    ImportReport,
    RestoreRequest,
    SnapshotListResponse,
    SnapshotMetadata,
    TableImportResult,
)

__all__ = [
    "AdminInfo", "AutomatedOriginResponse", "BindingResponse", "BindRequest",
    "ServerUpsert", "StatsResponse",
    "EventAccepted", "GatewayEventIn",
    "BackupResponse", "ImportMode", "ImportReport", "RestoreRequest",
    "SnapshotListResponse", "SnapshotMetadata", "TableImportResult",
]
