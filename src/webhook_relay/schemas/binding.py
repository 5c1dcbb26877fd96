"""Binding-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from webhook_relay.services.registry import AdminIdentity


class AdminInfo(BaseModel):
    """Administrator acting through the command front end."""

    user_id: str = Field(min_length=1, max_length=32)
    username: str = Field(min_length=1)
    display_name: str | None = None

    def to_identity(self) -> AdminIdentity:
        return AdminIdentity(
            user_id=self.user_id,
            display_label=self.username,
            display_name=self.display_name,
        )


class BindRequest(BaseModel):
    """Schema for binding a channel to a webhook endpoint."""

    channel_id: str = Field(min_length=1, max_length=32)
    endpoint_url: str = Field(min_length=1)
    server_id: str = Field(min_length=1, max_length=32)
    server_name: str | None = None
    admin: AdminInfo | None = None


class BindingResponse(BaseModel):
    """Schema for binding information returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    channel_id: str
    endpoint_url: str
    server_id: str
    accept_automated_origin: bool
    is_active: bool
    failure_count: int
    last_failure_at: datetime | None
    disabled_reason: str | None
    registered_by: str | None
    created_at: datetime
    updated_at: datetime


class AutomatedOriginResponse(BaseModel):
    channel_id: str
    accept_automated_origin: bool


class ServerUpsert(BaseModel):
    """Schema for recording a server the relay has joined."""

    name: str = Field(min_length=1)
    admin: AdminInfo | None = None


class StatsResponse(BaseModel):
    """Registry totals plus in-process delivery counters."""

    binding_count: int
    active_binding_count: int
    server_count: int
    admin_count: int
    delivery: dict[str, object] = Field(default_factory=dict)
