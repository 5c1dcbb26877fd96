"""Registry store for channel bindings, servers and administrators.

The registry is the only component that writes to the three registry tables.
Every public operation runs in its own short transaction, and every health
update is a single SQL statement so that concurrent deliveries to the same
channel never lose an increment. Upserts use the dialect's native
``INSERT ... ON CONFLICT`` (SQLite and PostgreSQL).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Table, func, not_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from webhook_relay.core.errors import BindingNotFoundError, StorageError
from webhook_relay.db.time import utcnow
from webhook_relay.models import Administrator, ChannelBinding, Server
from webhook_relay.services.health import disabled_reason, should_disable

# Configure logger for this module
logger = logging.getLogger(__name__)

UNKNOWN_SERVER_NAME = "Unknown"

_INSERT_BY_DIALECT: dict[str, Callable[[Table], Any]] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

_bindings: Table = ChannelBinding.__table__  # type: ignore[assignment]
_servers: Table = Server.__table__  # type: ignore[assignment]
_admins: Table = Administrator.__table__  # type: ignore[assignment]


@dataclass(frozen=True)
class AdminIdentity:
    """Platform user performing a tracked registry action."""

    user_id: str
    display_label: str
    display_name: str | None = None


@dataclass(frozen=True)
class FailureRecord:
    """Outcome of recording a failed delivery."""

    failure_count: int
    tripped: bool


@dataclass(frozen=True)
class RegistryStats:
    """Aggregate counts reported by ``stats``."""

    binding_count: int
    server_count: int
    admin_count: int = 0
    active_binding_count: int = 0


def dialect_insert(db: Session, table: Table) -> Any:
    """Return an ``INSERT`` supporting ``ON CONFLICT`` for the session's dialect."""
    name = db.get_bind().dialect.name
    try:
        return _INSERT_BY_DIALECT[name](table)
    except KeyError as exc:
        raise StorageError(f"Unsupported database dialect for upserts: {name}") from exc


class RegistryStore:
    """Data access for the webhook registry."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Session]:
        """Run the body in one transaction, translating database failures."""
        try:
            with self._session_factory() as db, db.begin():
                yield db
        except SQLAlchemyError as exc:
            logger.error("Registry operation %s failed: %s", operation, exc)
            raise StorageError(f"Registry operation {operation} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Administrator and server bookkeeping
    # ------------------------------------------------------------------

    def _touch_administrator(self, db: Session, admin: AdminIdentity, now: datetime) -> bool:
        """Create or refresh an administrator row.

        Returns True when this is the first time the administrator is seen,
        which is exactly when ``interaction_count`` is 1 after the upsert.
        """
        stmt = dialect_insert(db, _admins).values(
            user_id=admin.user_id,
            username=admin.display_label,
            display_name=admin.display_name,
            first_seen=now,
            last_seen=now,
            interaction_count=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                "username": stmt.excluded.username,
                "display_name": func.coalesce(stmt.excluded.display_name, _admins.c.display_name),
                "last_seen": now,
                "interaction_count": _admins.c.interaction_count + 1,
            },
        ).returning(_admins.c.interaction_count)
        interaction_count = db.execute(stmt).scalar_one()
        is_new = interaction_count == 1
        if is_new:
            logger.info("First tracked action from administrator %s", admin.user_id)
        return is_new

    def _upsert_server(
        self,
        db: Session,
        server_id: str,
        name: str | None,
        admin_id: str | None,
        now: datetime,
    ) -> None:
        stmt = dialect_insert(db, _servers).values(
            id=server_id,
            name=name or UNKNOWN_SERVER_NAME,
            added_by_admin_id=admin_id,
            created_at=now,
            updated_at=now,
        )
        set_: dict[str, Any] = {
            "updated_at": now,
            # Keep whoever added the server first.
            "added_by_admin_id": func.coalesce(
                _servers.c.added_by_admin_id, stmt.excluded.added_by_admin_id
            ),
        }
        if name:
            set_["name"] = stmt.excluded.name
        db.execute(stmt.on_conflict_do_update(index_elements=["id"], set_=set_))

    # ------------------------------------------------------------------
    # Binding lifecycle
    # ------------------------------------------------------------------

    def bind(
        self,
        channel_id: str,
        endpoint_url: str,
        server_id: str,
        admin: AdminIdentity | None = None,
        server_name: str | None = None,
    ) -> ChannelBinding:
        """Create or overwrite the binding for ``channel_id``.

        Rebinding re-activates a disabled binding and clears its failure
        state. The automated-origin flag is preserved across rebinds.
        """
        with self._transaction("bind") as db:
            now = utcnow()
            admin_id = admin.user_id if admin else None
            if admin is not None:
                self._touch_administrator(db, admin, now)
            self._upsert_server(db, server_id, server_name, admin_id, now)

            stmt = dialect_insert(db, _bindings).values(
                channel_id=channel_id,
                webhook_url=endpoint_url,
                guild_id=server_id,
                send_bot_messages=False,
                is_active=True,
                failure_count=0,
                last_failure_at=None,
                disabled_reason=None,
                registered_by_admin_id=admin_id,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["channel_id"],
                set_={
                    "webhook_url": stmt.excluded.webhook_url,
                    "guild_id": stmt.excluded.guild_id,
                    "is_active": True,
                    "failure_count": 0,
                    "last_failure_at": None,
                    "disabled_reason": None,
                    "registered_by_admin_id": func.coalesce(
                        stmt.excluded.registered_by_admin_id,
                        _bindings.c.registered_by_admin_id,
                    ),
                    "updated_at": now,
                },
            )
            db.execute(stmt)
            binding = db.scalars(
                select(ChannelBinding).where(ChannelBinding.channel_id == channel_id)
            ).one()

        logger.info("Bound channel %s to %s (server %s)", channel_id, endpoint_url, server_id)
        return binding

    def unbind(self, channel_id: str) -> ChannelBinding:
        """Delete the binding for ``channel_id`` and return the removed row."""
        with self._transaction("unbind") as db:
            binding = db.scalars(
                select(ChannelBinding).where(ChannelBinding.channel_id == channel_id)
            ).first()
            if binding is None:
                raise BindingNotFoundError(channel_id)
            db.delete(binding)

        logger.info("Removed binding for channel %s", channel_id)
        return binding

    def lookup_active(self, channel_id: str) -> ChannelBinding | None:
        """Return the binding only when it is active."""
        with self._transaction("lookup_active") as db:
            return db.scalars(
                select(ChannelBinding).where(
                    ChannelBinding.channel_id == channel_id,
                    ChannelBinding.is_active.is_(True),
                )
            ).first()

    def lookup_any(self, channel_id: str) -> ChannelBinding | None:
        """Return the binding regardless of its active state."""
        with self._transaction("lookup_any") as db:
            return db.scalars(
                select(ChannelBinding).where(ChannelBinding.channel_id == channel_id)
            ).first()

    def list_for_server(self, server_id: str) -> list[ChannelBinding]:
        """Return all bindings of a server, newest first."""
        with self._transaction("list_for_server") as db:
            return list(
                db.scalars(
                    select(ChannelBinding)
                    .where(ChannelBinding.server_id == server_id)
                    .order_by(ChannelBinding.created_at.desc(), ChannelBinding.id.desc())
                )
            )

    def toggle_automated_origin(self, channel_id: str) -> bool | None:
        """Flip the automated-origin flag; ``None`` when the channel is unbound."""
        with self._transaction("toggle_automated_origin") as db:
            new_value = db.execute(
                update(_bindings)
                .where(_bindings.c.channel_id == channel_id)
                .values(
                    send_bot_messages=not_(_bindings.c.send_bot_messages),
                    updated_at=utcnow(),
                )
                .returning(_bindings.c.send_bot_messages)
            ).scalar_one_or_none()

        if new_value is None:
            return None
        logger.info("Automated-origin forwarding for %s is now %s", channel_id, new_value)
        return bool(new_value)

    # ------------------------------------------------------------------
    # Health bookkeeping
    # ------------------------------------------------------------------

    def record_success(self, channel_id: str) -> None:
        """Reset the failure counter after a successful delivery."""
        with self._transaction("record_success") as db:
            db.execute(
                update(_bindings)
                .where(_bindings.c.channel_id == channel_id)
                .where(
                    (_bindings.c.failure_count != 0) | _bindings.c.last_failure_at.is_not(None)
                )
                .values(failure_count=0, last_failure_at=None, updated_at=utcnow())
            )

    def record_failure(
        self,
        channel_id: str,
        reason: str,
        counts_toward_limit: bool,
    ) -> FailureRecord:
        """Record a failed delivery and disable the binding on the final strike.

        The increment is one ``UPDATE ... RETURNING`` statement. The disable is
        a second statement guarded by ``is_active`` so that, when concurrent
        failures cross the limit together, exactly one caller sees
        ``tripped=True``.
        """
        with self._transaction("record_failure") as db:
            now = utcnow()
            if not counts_toward_limit:
                failure_count = db.execute(
                    update(_bindings)
                    .where(_bindings.c.channel_id == channel_id)
                    .values(last_failure_at=now, updated_at=now)
                    .returning(_bindings.c.failure_count)
                ).scalar_one_or_none()
                if failure_count is None:
                    raise BindingNotFoundError(channel_id)
                return FailureRecord(failure_count=failure_count, tripped=False)

            failure_count = db.execute(
                update(_bindings)
                .where(_bindings.c.channel_id == channel_id)
                .values(
                    failure_count=_bindings.c.failure_count + 1,
                    last_failure_at=now,
                    updated_at=now,
                )
                .returning(_bindings.c.failure_count)
            ).scalar_one_or_none()
            if failure_count is None:
                raise BindingNotFoundError(channel_id)

            tripped = False
            if should_disable(failure_count):
                disabled_id = db.execute(
                    update(_bindings)
                    .where(
                        _bindings.c.channel_id == channel_id,
                        _bindings.c.is_active.is_(True),
                    )
                    .values(
                        is_active=False,
                        disabled_reason=disabled_reason(failure_count, reason),
                        updated_at=now,
                    )
                    .returning(_bindings.c.id)
                ).scalar_one_or_none()
                tripped = disabled_id is not None

        return FailureRecord(failure_count=failure_count, tripped=tripped)

    # ------------------------------------------------------------------
    # Servers, legacy backfill and statistics
    # ------------------------------------------------------------------

    def store_server(
        self,
        server_id: str,
        name: str,
        admin: AdminIdentity | None = None,
    ) -> None:
        """Record a server the relay was added to, refreshing its name."""
        with self._transaction("store_server") as db:
            now = utcnow()
            if admin is not None:
                self._touch_administrator(db, admin, now)
            self._upsert_server(db, server_id, name, admin.user_id if admin else None, now)

    def backfill_admin(self, channel_id: str, server_id: str | None, admin: AdminIdentity) -> bool:
        """Attach ``admin`` to legacy rows created before admins were tracked.

        Only fills empty references; existing attributions are never replaced.
        Returns True when at least one row was updated.
        """
        with self._transaction("backfill_admin") as db:
            now = utcnow()
            self._touch_administrator(db, admin, now)
            updated = db.execute(
                update(_bindings)
                .where(
                    _bindings.c.channel_id == channel_id,
                    _bindings.c.registered_by_admin_id.is_(None),
                )
                .values(registered_by_admin_id=admin.user_id, updated_at=now)
            ).rowcount
            if server_id:
                updated += db.execute(
                    update(_servers)
                    .where(_servers.c.id == server_id, _servers.c.added_by_admin_id.is_(None))
                    .values(added_by_admin_id=admin.user_id, updated_at=now)
                ).rowcount

        if updated:
            logger.info("Backfilled administrator %s on legacy rows", admin.user_id)
        return bool(updated)

    def stats(self) -> RegistryStats:
        """Return binding, server and administrator counts."""
        with self._transaction("stats") as db:
            return RegistryStats(
                binding_count=db.scalar(select(func.count()).select_from(_bindings)) or 0,
                server_count=db.scalar(select(func.count()).select_from(_servers)) or 0,
                admin_count=db.scalar(select(func.count()).select_from(_admins)) or 0,
                active_binding_count=db.scalar(
                    select(func.count())
                    .select_from(_bindings)
                    .where(_bindings.c.is_active.is_(True))
                )
                or 0,
            )

    def is_empty(self) -> bool:
        """Return True when no bindings and no servers are stored."""
        stats = self.stats()
        return stats.binding_count == 0 and stats.server_count == 0
