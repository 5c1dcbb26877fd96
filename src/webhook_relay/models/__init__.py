# src/webhook_relay/models/__init__.py
"""SQLAlchemy models for the webhook registry."""

from .administrator import Administrator
from .binding import ChannelBinding
from .server import Server

__all__ = [
    "Administrator",
    "ChannelBinding",
    "Server",
]
