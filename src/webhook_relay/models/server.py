"""SQLAlchemy model for servers (guilds) known to the relay."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from webhook_relay.db.session import Base
from webhook_relay.db.time import utcnow


class Server(Base):
    """A server the relay has seen through an administrator action or a join."""

    __tablename__ = "guilds"

    server_id: Mapped[str] = mapped_column("id", String(32), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    added_by: Mapped[str | None] = mapped_column(
        "added_by_admin_id", String(32), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
