"""Administrative operations used by the command front end and the admin API."""

from __future__ import annotations

import asyncio
import logging

from webhook_relay.core.errors import (
    BindingNotFoundError,
    EndpointValidationError,
    InvalidEndpointError,
)
from webhook_relay.models import ChannelBinding
from webhook_relay.services.delivery import DeliveryPipeline
from webhook_relay.services.health import DeliveryError, FailureKind
from webhook_relay.services.registry import AdminIdentity, RegistryStats, RegistryStore

# Configure logger for this module
logger = logging.getLogger(__name__)

REQUIRED_SCHEME = "https://"


class AdminService:
    """Thin layer over the registry that adds endpoint validation."""

    def __init__(self, registry: RegistryStore, pipeline: DeliveryPipeline) -> None:
        self.registry = registry
        self.pipeline = pipeline

    async def bind(
        self,
        channel_id: str,
        endpoint_url: str,
        server_id: str,
        admin: AdminIdentity | None = None,
        server_name: str | None = None,
    ) -> ChannelBinding:
        """Validate ``endpoint_url`` with a test POST, then store the binding.

        Raises:
            InvalidEndpointError: the URL is not HTTPS.
            EndpointValidationError: the test POST failed; nothing is stored.
            StorageError: the registry write failed.
        """
        endpoint_url = endpoint_url.strip()
        if not endpoint_url.startswith(REQUIRED_SCHEME):
            raise InvalidEndpointError(
                "Invalid webhook URL. Please provide a valid HTTPS URL."
            )

        try:
            await self.pipeline.validate_endpoint(endpoint_url)
        except DeliveryError as exc:
            if exc.kind is FailureKind.HTTP_STATUS:
                reason = f"Status: {exc.status_code}"
            elif exc.kind is FailureKind.TIMEOUT:
                reason = "Request timed out."
            else:
                reason = f"Error: {exc.detail}"
            logger.info("Endpoint validation failed for channel %s: %s", channel_id, reason)
            raise EndpointValidationError(endpoint_url, reason) from exc

        return await asyncio.to_thread(
            self.registry.bind,
            channel_id,
            endpoint_url,
            server_id,
            admin,
            server_name,
        )

    async def unbind(self, channel_id: str) -> ChannelBinding:
        return await asyncio.to_thread(self.registry.unbind, channel_id)

    async def get_binding_details(
        self,
        channel_id: str,
        admin: AdminIdentity | None = None,
    ) -> ChannelBinding:
        """Return the binding in any state, attributing legacy rows to ``admin``."""
        binding = await asyncio.to_thread(self.registry.lookup_any, channel_id)
        if binding is None:
            raise BindingNotFoundError(channel_id)
        if admin is not None and binding.registered_by is None:
            await asyncio.to_thread(
                self.registry.backfill_admin, channel_id, binding.server_id, admin
            )
            binding.registered_by = admin.user_id
        return binding

    async def list_for_server(self, server_id: str) -> list[ChannelBinding]:
        return await asyncio.to_thread(self.registry.list_for_server, server_id)

    async def toggle_automated_origin(self, channel_id: str) -> bool:
        new_value = await asyncio.to_thread(self.registry.toggle_automated_origin, channel_id)
        if new_value is None:
            raise BindingNotFoundError(channel_id)
        return new_value

    async def stats(self) -> RegistryStats:
        return await asyncio.to_thread(self.registry.stats)

    async def store_server(
        self,
        server_id: str,
        name: str,
        admin: AdminIdentity | None = None,
    ) -> None:
        await asyncio.to_thread(self.registry.store_server, server_id, name, admin)
