"""Business logic services for the webhook relay."""

from .admin import AdminService
from .delivery import DeliveryPipeline, DeliveryResult
from .health import DeliveryError, FailureKind, HealthTracker
from .registry import AdminIdentity, RegistryStore
from .snapshot_service import SnapshotService, SnapshotWorker

__all__ = [
    "AdminService",
    "DeliveryPipeline", "DeliveryResult",
    "DeliveryError", "FailureKind", "HealthTracker",
    "AdminIdentity", "RegistryStore",
    "SnapshotService", "SnapshotWorker",
]
