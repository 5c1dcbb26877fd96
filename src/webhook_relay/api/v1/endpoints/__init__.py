"""API endpoint modules for version 1."""

from .bindings import router as bindings_router
from .events import router as events_router
from .snapshots import router as snapshots_router
from .system import router as system_router

__all__ = [
    "bindings_router",
    "events_router",
    "snapshots_router",
    "system_router",
]
