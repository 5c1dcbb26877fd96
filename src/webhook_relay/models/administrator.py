"""SQLAlchemy model for administrators who configured the relay."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from webhook_relay.db.session import Base
from webhook_relay.db.time import utcnow


class Administrator(Base):
    """Platform user who performed at least one tracked registry action."""

    __tablename__ = "server_admins"

    user_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    display_label: Mapped[str] = mapped_column("username", Text, nullable=False)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    first_seen: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_seen: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    # Bumped on every tracked action; 1 means first sighting.
    interaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
