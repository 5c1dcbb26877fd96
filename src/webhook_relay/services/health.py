"""Endpoint health: failure classification and the auto-disable policy.

Every delivery outcome maps to one of three actions:

- success resets the consecutive-failure counter;
- a transient failure (DNS, unreachable network, timeout, HTTP 408, HTTP 5xx)
  refreshes ``last_failure_at`` without counting;
- any other failure counts, and the fifth consecutive counted failure disables
  the binding until an administrator binds the channel again.

No single status code disables a binding on its own.
"""

from __future__ import annotations

import errno
import json
import logging
import socket
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from webhook_relay.services.registry import RegistryStore

# Configure logger for this module
logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_FAILURES = 5

HTTP_REQUEST_TIMEOUT = 408
MAX_ERROR_BODY_CHARS = 200

_UNREACHABLE_ERRNOS = frozenset(
    code
    for code in (
        getattr(errno, "ENETUNREACH", None),
        getattr(errno, "EHOSTUNREACH", None),
        getattr(errno, "ENETDOWN", None),
        getattr(errno, "EHOSTDOWN", None),
    )
    if code is not None
)


class FailureKind(Enum):
    """Structured kind of a failed delivery attempt."""

    NETWORK = "network"        # DNS failure or unreachable network/host
    TIMEOUT = "timeout"        # connect, read, write or pool timeout
    HTTP_STATUS = "http_status"  # non-2xx response
    CONNECTION = "connection"  # refused, reset or otherwise broken transport
    MALFORMED = "malformed"    # a response arrived but could not be understood


class HealthAction(Enum):
    """What the registry must do with a delivery outcome."""

    RESET = "reset"
    REFRESH = "refresh"
    INCREMENT = "increment"


class DeliveryError(Exception):
    """A single failed delivery attempt.

    Only ``validate_endpoint`` raises it to callers; during normal delivery
    it feeds the health state and the logs.
    """

    def __init__(
        self,
        kind: FailureKind,
        detail: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(detail)
        self.kind = kind
        self.detail = detail
        self.status_code = status_code

    @property
    def counts_toward_limit(self) -> bool:
        """Return False for transient conditions that must not disable a binding."""
        if self.kind in (FailureKind.NETWORK, FailureKind.TIMEOUT):
            return False
        if self.kind is FailureKind.HTTP_STATUS and self.status_code is not None:
            return not (
                self.status_code == HTTP_REQUEST_TIMEOUT or self.status_code >= 500
            )
        return True

    @property
    def text(self) -> str:
        """Short human-readable description for logs and ``disabled_reason``."""
        if self.kind is FailureKind.HTTP_STATUS:
            return f"HTTP {self.status_code}: {self.detail}"
        if self.kind is FailureKind.TIMEOUT:
            return f"Timeout: {self.detail}"
        if self.kind is FailureKind.MALFORMED:
            return f"Malformed response: {self.detail}"
        return f"Connection error: {self.detail}"

    def __repr__(self) -> str:
        return f"DeliveryError({self.kind.value}, {self.text!r})"


@dataclass(frozen=True)
class HealthUpdate:
    """Result of applying one delivery outcome to a binding."""

    action: HealthAction
    failure_count: int
    tripped: bool = False


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _is_unreachable(exc: BaseException) -> bool:
    """Return True when the chain carries a DNS or network-unreachable OSError."""
    for link in _exception_chain(exc):
        if isinstance(link, socket.gaierror):
            return True
        if isinstance(link, OSError) and link.errno in _UNREACHABLE_ERRNOS:
            return True
    return False


def _describe(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or type(exc).__name__


def classify_exception(exc: httpx.HTTPError) -> DeliveryError:
    """Map a transport-level httpx failure onto a ``DeliveryError``."""
    if isinstance(exc, httpx.TimeoutException):
        return DeliveryError(FailureKind.TIMEOUT, _describe(exc))
    if isinstance(exc, httpx.TransportError) and _is_unreachable(exc):
        return DeliveryError(FailureKind.NETWORK, _describe(exc))
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.DecodingError)):
        return DeliveryError(FailureKind.MALFORMED, _describe(exc))
    return DeliveryError(FailureKind.CONNECTION, _describe(exc))


def _response_message(response: httpx.Response) -> str:
    """Prefer a JSON ``message`` field, then the body, then the reason phrase."""
    body = response.text.strip() if response.content else ""
    if body:
        try:
            payload = json.loads(body)
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])[:MAX_ERROR_BODY_CHARS]
        return body[:MAX_ERROR_BODY_CHARS]
    return response.reason_phrase or "no response body"


def classify_response(response: httpx.Response) -> DeliveryError | None:
    """Return ``None`` for 2xx responses, otherwise the matching failure."""
    if response.is_success:
        return None
    return DeliveryError(
        FailureKind.HTTP_STATUS,
        _response_message(response),
        status_code=response.status_code,
    )


def decide(error: DeliveryError | None) -> HealthAction:
    """Decide the registry action for one delivery outcome."""
    if error is None:
        return HealthAction.RESET
    if error.counts_toward_limit:
        return HealthAction.INCREMENT
    return HealthAction.REFRESH


def should_disable(failure_count: int) -> bool:
    """Return True once the consecutive-failure limit is reached."""
    return failure_count >= MAX_CONSECUTIVE_FAILURES


def disabled_reason(failure_count: int, error_text: str) -> str:
    """Audit message stored on the binding when it is disabled."""
    return (
        f"Auto-disabled after {failure_count} consecutive failures. "
        f"Last error: {error_text}"
    )


class HealthTracker:
    """Persists delivery outcomes through the registry."""

    def __init__(self, registry: RegistryStore) -> None:
        self.registry = registry

    def apply(self, channel_id: str, error: DeliveryError | None) -> HealthUpdate:
        action = decide(error)
        if error is None:
            self.registry.record_success(channel_id)
            return HealthUpdate(action=action, failure_count=0)

        record = self.registry.record_failure(
            channel_id,
            error.text,
            counts_toward_limit=action is HealthAction.INCREMENT,
        )
        if record.tripped:
            logger.warning(
                "Webhook for channel %s auto-disabled after %d consecutive failures: %s",
                channel_id,
                record.failure_count,
                error.text,
            )
        elif action is HealthAction.INCREMENT:
            logger.warning(
                "Webhook for channel %s failure count: %d/%d (%s)",
                channel_id,
                record.failure_count,
                MAX_CONSECUTIVE_FAILURES,
                error.text,
            )
        else:
            logger.debug(
                "Temporary error for channel %s not counted towards limit: %s",
                channel_id,
                error.text,
            )
        return HealthUpdate(
            action=action,
            failure_count=record.failure_count,
            tripped=record.tripped,
        )
