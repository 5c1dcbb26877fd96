"""Delivery pipeline: forwards gateway events to per-channel webhooks.

Each inbound event produces at most one HTTP attempt. There is no queue and no
retry of a failed event; the next event for the channel is the next attempt.
Failures never leave this module: they are classified, written to the
binding's health fields and logged.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from webhook_relay.core.errors import BindingNotFoundError
from webhook_relay.core.settings import settings
from webhook_relay.services.events import GatewayEvent, build_payload
from webhook_relay.services.health import (
    DeliveryError,
    FailureKind,
    HealthTracker,
    classify_exception,
    classify_response,
)
from webhook_relay.services.registry import RegistryStore

# Configure logger for this module
logger = logging.getLogger(__name__)

VALIDATION_EVENT_TYPE = "test_webhook"
VALIDATION_MESSAGE = (
    "This is a test from your webhook relay setup. "
    "If you see this, your webhook is working!"
)
JSON_HEADERS = {"Content-Type": "application/json"}


class DeliveryResult(Enum):
    """What ``deliver`` did with one event."""

    SKIPPED_UNBOUND = "skipped_unbound"      # no active binding
    SKIPPED_AUTOMATED = "skipped_automated"  # automated author, channel opted out
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass(frozen=True)
class DeliveryConfig:
    """Immutable configuration for outbound deliveries."""

    timeout_seconds: float
    validation_timeout_seconds: float


def load_delivery_config() -> DeliveryConfig:
    """Build configuration object from global settings."""

    return DeliveryConfig(
        timeout_seconds=float(settings.delivery_timeout_seconds),
        validation_timeout_seconds=float(settings.validation_timeout_seconds),
    )


@dataclass
class DeliveryMetrics:
    """In-process counters for delivery attempts."""

    attempt_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    total_response_time: float = 0.0
    min_response_time: float = float("inf")
    max_response_time: float = 0.0
    failures_by_kind: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    event_type_counts: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record_attempt(
        self, event_type: str, response_time: float, error: DeliveryError | None
    ) -> None:
        """Record one HTTP attempt."""
        self.attempt_count += 1
        self.total_response_time += response_time
        self.min_response_time = min(self.min_response_time, response_time)
        self.max_response_time = max(self.max_response_time, response_time)
        self.event_type_counts[event_type] += 1

        if error is None:
            self.success_count += 1
        else:
            self.failure_count += 1
            self.failures_by_kind[error.kind.value] += 1

    def record_skip(self) -> None:
        self.skipped_count += 1

    def get_average_response_time(self) -> float:
        """Get average response time."""
        return self.total_response_time / self.attempt_count if self.attempt_count > 0 else 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "attempt_count": self.attempt_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "average_response_time": self.get_average_response_time(),
            "min_response_time": (
                self.min_response_time if self.min_response_time != float("inf") else 0.0
            ),
            "max_response_time": self.max_response_time,
            "failures_by_kind": dict(self.failures_by_kind),
            "event_type_counts": dict(self.event_type_counts),
        }


class DeliveryPipeline:
    """Turns gateway events into webhook POSTs and health updates."""

    def __init__(
        self,
        registry: RegistryStore,
        config: DeliveryConfig | None = None,
        client: httpx.AsyncClient | None = None,
        health: HealthTracker | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or load_delivery_config()
        self.health = health or HealthTracker(registry)
        self.metrics = DeliveryMetrics()
        self._client = client
        self._owns_client = client is None
        self._client_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[DeliveryResult]] = set()
        self._channel_locks: dict[str, asyncio.Lock] = {}
        self._channel_pending: dict[str, int] = {}

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                # Redirects are not followed: an unresolved 3xx counts as a failure.
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    follow_redirects=False,
                )
        return self._client

    async def _post(
        self,
        url: str,
        payload: dict[str, Any],
        timeout: float,
        record_metrics: bool = True,
    ) -> DeliveryError | None:
        """POST ``payload`` as JSON and classify the outcome."""
        client = await self._ensure_client()
        start_time = time.monotonic()
        error: DeliveryError | None
        try:
            response = await client.post(
                url, json=payload, headers=JSON_HEADERS, timeout=timeout
            )
        except httpx.HTTPError as exc:
            error = classify_exception(exc)
        except httpx.InvalidURL as exc:
            error = DeliveryError(FailureKind.CONNECTION, f"Invalid URL: {exc}")
        else:
            error = classify_response(response)

        if record_metrics:
            self.metrics.record_attempt(
                str(payload.get("event_type")), time.monotonic() - start_time, error
            )
        return error

    async def deliver(self, event: GatewayEvent, channel_id: str | None = None) -> DeliveryResult:
        """Forward ``event`` to the binding of ``channel_id``.

        Never raises; unexpected errors are logged and reported as ``FAILED``.
        """
        channel_id = channel_id or event.channel_id
        try:
            return await self._deliver(event, channel_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Unexpected error delivering %s for channel %s", event.event_type, channel_id
            )
            return DeliveryResult.FAILED

    async def _deliver(self, event: GatewayEvent, channel_id: str) -> DeliveryResult:
        binding = await asyncio.to_thread(self.registry.lookup_active, channel_id)
        if binding is None:
            logger.debug("No active webhook for channel %s, skipping", channel_id)
            self.metrics.record_skip()
            return DeliveryResult.SKIPPED_UNBOUND

        if event.is_from_automated_origin and not binding.accept_automated_origin:
            logger.debug(
                "Automated message ignored, forwarding disabled for channel %s", channel_id
            )
            self.metrics.record_skip()
            return DeliveryResult.SKIPPED_AUTOMATED

        payload = build_payload(event)
        logger.debug("Sending %s to %s", event.event_type, binding.endpoint_url)
        error = await self._post(binding.endpoint_url, payload, self.config.timeout_seconds)
        if error is not None:
            logger.info(
                "Error forwarding %s for channel %s: %s",
                event.event_type,
                channel_id,
                error.text,
            )

        try:
            await asyncio.to_thread(self.health.apply, channel_id, error)
        except BindingNotFoundError:
            logger.debug("Channel %s was unbound during delivery", channel_id)
        return DeliveryResult.DELIVERED if error is None else DeliveryResult.FAILED

    def dispatch(self, event: GatewayEvent) -> asyncio.Task[DeliveryResult]:
        """Deliver ``event`` in the background.

        Attempts for the same channel run one at a time in dispatch order;
        different channels proceed in parallel.
        """
        task = asyncio.create_task(self._deliver_in_order(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver_in_order(self, event: GatewayEvent) -> DeliveryResult:
        channel_id = event.channel_id
        lock = self._channel_locks.get(channel_id)
        if lock is None:
            lock = self._channel_locks[channel_id] = asyncio.Lock()
        self._channel_pending[channel_id] = self._channel_pending.get(channel_id, 0) + 1
        try:
            async with lock:
                return await self.deliver(event, channel_id)
        finally:
            remaining = self._channel_pending[channel_id] - 1
            if remaining:
                self._channel_pending[channel_id] = remaining
            else:
                del self._channel_pending[channel_id]
                del self._channel_locks[channel_id]

    async def validate_endpoint(self, url: str) -> None:
        """Send the one-time test POST used before a binding is stored.

        Raises:
            DeliveryError: when the endpoint does not answer with a 2xx status.
        """
        payload = {"event_type": VALIDATION_EVENT_TYPE, "message": VALIDATION_MESSAGE}
        error = await self._post(
            url, payload, self.config.validation_timeout_seconds, record_metrics=False
        )
        if error is not None:
            raise error

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for all dispatched deliveries to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Finish in-flight deliveries and release the HTTP client."""
        await self.drain()
        async with self._client_lock:
            if self._client is not None and self._owns_client:
                await self._client.aclose()
            self._client = None
