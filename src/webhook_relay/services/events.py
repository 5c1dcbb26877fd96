"""Typed gateway events handed to the delivery pipeline.

The gateway client (outside this package) turns raw platform events into
``GatewayEvent`` records. The pipeline only looks at the routing fields; the
kind-specific ``fields`` mapping is forwarded to endpoints untouched.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from webhook_relay.db.time import epoch_millis

THREAD_PREFIX = "thread_"


class EventKind(str, Enum):
    """Gateway event kinds the relay forwards."""

    MESSAGE = "message"
    REACTION_ADD = "reaction_add"
    REACTION_REMOVE = "reaction_remove"
    THREAD_CREATE = "thread_create"
    THREAD_DELETE = "thread_delete"
    THREAD_UPDATE = "thread_update"
    THREAD_MEMBER_JOIN = "thread_member_join"
    THREAD_MEMBER_LEAVE = "thread_member_leave"
    THREAD_STARTER_MESSAGE = "thread_starter_message"


# Kinds whose wire name changes when the event happens inside a thread.
_THREAD_AWARE_KINDS = frozenset(
    {EventKind.MESSAGE, EventKind.REACTION_ADD, EventKind.REACTION_REMOVE}
)


@dataclass(frozen=True)
class GatewayEvent:
    """One inbound platform event.

    ``channel_id`` is the channel whose binding receives the event; for thread
    events that is the thread's parent channel.
    """

    kind: EventKind
    channel_id: str
    author_id: str
    author_name: str
    server_id: str | None = None
    is_from_automated_origin: bool = False
    in_thread: bool = False
    fields: Mapping[str, Any] = field(default_factory=dict)

    @property
    def event_type(self) -> str:
        """Wire name sent as ``event_type`` in the delivery payload."""
        if self.kind is EventKind.MESSAGE:
            return "thread_message" if self.in_thread else "message_create"
        if self.kind in _THREAD_AWARE_KINDS and self.in_thread:
            return f"{THREAD_PREFIX}{self.kind.value}"
        return self.kind.value


def build_payload(event: GatewayEvent, timestamp_ms: int | None = None) -> dict[str, Any]:
    """Build the JSON body POSTed to an endpoint for ``event``."""
    payload: dict[str, Any] = {
        "event_type": event.event_type,
        "timestamp": epoch_millis() if timestamp_ms is None else timestamp_ms,
    }
    for key, value in event.fields.items():
        # The envelope keys always win over kind-specific fields.
        if key not in payload:
            payload[key] = value
    return payload
