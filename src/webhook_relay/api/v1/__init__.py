"""Version 1 API endpoints."""

from .endpoints import (
    bindings_router,
    events_router,
    snapshots_router,
    system_router,
)

__all__ = [
    "bindings_router",
    "events_router",
    "snapshots_router",
    "system_router",
]
