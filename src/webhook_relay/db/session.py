"""Database session configuration."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from webhook_relay.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# Ensure model modules are imported so that metadata is populated when create_all runs.
import webhook_relay.models  # noqa: E402,F401


def build_engine(url: str | None = None) -> Engine:
    """Create an engine for ``url`` (defaults to the configured database)."""
    url = url or settings.database_url
    connect_args: dict[str, object] = {}
    if url.startswith("sqlite"):
        # Registry calls run in worker threads via asyncio.to_thread.
        connect_args["check_same_thread"] = False
    return create_engine(
        url,
        pool_pre_ping=True,
        echo=settings.sql_debug,
        connect_args=connect_args,
    )


def build_session_factory(bind: Engine) -> sessionmaker[Session]:
    """Return a session factory whose objects stay usable after commit."""
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


def create_tables(bind: Engine) -> None:
    """Create all database tables."""
    Base.metadata.create_all(bind=bind)
