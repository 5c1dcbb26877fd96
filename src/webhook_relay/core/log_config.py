"""Process-wide logging setup."""

from __future__ import annotations

import logging

from webhook_relay.core.settings import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger from ``LOG_LEVEL`` unless handlers already exist."""
    logging.basicConfig(level=(level or settings.log_level).upper(), format=LOG_FORMAT)
    if settings.sql_debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
