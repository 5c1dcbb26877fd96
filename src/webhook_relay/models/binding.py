"""SQLAlchemy model for channel to endpoint bindings."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from webhook_relay.db.session import Base
from webhook_relay.db.time import utcnow


class ChannelBinding(Base):
    """Webhook endpoint configured for a single channel, plus its health state."""

    __tablename__ = "channel_webhooks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    endpoint_url: Mapped[str] = mapped_column("webhook_url", Text, nullable=False)
    server_id: Mapped[str] = mapped_column("guild_id", String(32), nullable=False, index=True)
    # Forward events authored by bots and other automation.
    accept_automated_origin: Mapped[bool] = mapped_column(
        "send_bot_messages", Boolean, nullable=False, default=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Consecutive limit-counting failures since the last success or rebind.
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_failure_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Set only when is_active flips to False.
    disabled_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Legacy rows predate admin tracking and carry NULL here.
    registered_by: Mapped[str | None] = mapped_column(
        "registered_by_admin_id", String(32), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        state = "active" if self.is_active else "disabled"
        return f"<ChannelBinding {self.channel_id} -> {self.endpoint_url} ({state})>"
