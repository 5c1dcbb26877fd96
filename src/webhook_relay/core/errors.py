"""Exception hierarchy for the webhook relay."""

from __future__ import annotations


class RelayError(RuntimeError):
    """Base exception for all relay failures."""


class StorageError(RelayError):
    """Raised when the registry database cannot complete an operation."""


class BindingNotFoundError(RelayError):
    """Raised when an operation targets a channel without a binding."""

    def __init__(self, channel_id: str) -> None:
        super().__init__(f"No webhook is configured for channel {channel_id}")
        self.channel_id = channel_id


class InvalidEndpointError(RelayError):
    """Raised when an endpoint URL is rejected before any network call."""


class EndpointValidationError(RelayError):
    """Raised when the one-time validation POST to a new endpoint fails."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to reach the webhook URL {url}: {reason}")
        self.url = url
        self.reason = reason


class SnapshotParseError(RelayError):
    """Raised for a single malformed snapshot row."""


class SnapshotTransportError(RelayError):
    """Raised when a snapshot cannot be fetched from or published to storage."""


class SnapshotNotFoundError(RelayError):
    """Raised when a named snapshot does not exist in the selected store."""


class SnapshotInProgressError(RelayError):
    """Raised when a snapshot export or import is already running."""
