"""Gateway event schema accepted by ``POST /events``."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from webhook_relay.services.events import EventKind, GatewayEvent


class GatewayEventIn(BaseModel):
    """One platform event handed over by the gateway client."""

    kind: EventKind
    channel_id: str = Field(min_length=1, max_length=32)
    author_id: str
    author_name: str
    server_id: str | None = None
    is_from_automated_origin: bool = False
    in_thread: bool = False
    fields: dict[str, Any] = Field(default_factory=dict)

    def to_event(self) -> GatewayEvent:
        return GatewayEvent(
            kind=self.kind,
            channel_id=self.channel_id,
            author_id=self.author_id,
            author_name=self.author_name,
            server_id=self.server_id,
            is_from_automated_origin=self.is_from_automated_origin,
            in_thread=self.in_thread,
            fields=self.fields,
        )


class EventAccepted(BaseModel):
    event_type: str
    channel_id: str
    status: str = "accepted"
