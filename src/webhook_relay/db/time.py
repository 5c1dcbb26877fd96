# src/webhook_relay/db/time.py
"""Time utilities for database models and snapshots."""

from __future__ import annotations

import time
from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def epoch_millis() -> int:
    """Return the current time as integer milliseconds since the Unix epoch."""
    return time.time_ns() // 1_000_000


def ensure_aware(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
