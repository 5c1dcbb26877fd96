"""Binding administration endpoints."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Request, status

from webhook_relay.api.v1.dependencies import AdminClaimsDep, AdminServiceDep
from webhook_relay.models import ChannelBinding
from webhook_relay.schemas.binding import (
    AdminInfo,
    AutomatedOriginResponse,
    BindingResponse,
    BindRequest,
    ServerUpsert,
    StatsResponse,
)

router = APIRouter(tags=["bindings"])


@router.post(
    "/bindings",
    response_model=BindingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def bind_channel(
    body: BindRequest,
    admin_service: AdminServiceDep,
    _claims: AdminClaimsDep,
) -> ChannelBinding:
    """Validate the endpoint and bind it to the channel, replacing any previous binding."""
    return await admin_service.bind(
        body.channel_id,
        body.endpoint_url,
        body.server_id,
        admin=body.admin.to_identity() if body.admin else None,
        server_name=body.server_name,
    )


@router.get("/bindings/{channel_id}", response_model=BindingResponse)
async def get_binding(
    channel_id: str,
    admin_service: AdminServiceDep,
    _claims: AdminClaimsDep,
    admin_id: str | None = None,
    admin_username: str | None = None,
) -> ChannelBinding:
    """Return the binding in any state; optional admin info backfills legacy rows."""
    admin = None
    if admin_id and admin_username:
        admin = AdminInfo(user_id=admin_id, username=admin_username).to_identity()
    return await admin_service.get_binding_details(channel_id, admin)


@router.delete("/bindings/{channel_id}", response_model=BindingResponse)
async def unbind_channel(
    channel_id: str,
    admin_service: AdminServiceDep,
    _claims: AdminClaimsDep,
) -> ChannelBinding:
    return await admin_service.unbind(channel_id)


@router.post(
    "/bindings/{channel_id}/automated-origin",
    response_model=AutomatedOriginResponse,
)
async def toggle_automated_origin(
    channel_id: str,
    admin_service: AdminServiceDep,
    _claims: AdminClaimsDep,
) -> AutomatedOriginResponse:
    """Flip whether automated authors are forwarded for this channel."""
    value = await admin_service.toggle_automated_origin(channel_id)
    return AutomatedOriginResponse(channel_id=channel_id, accept_automated_origin=value)


@router.get("/servers/{server_id}/bindings", response_model=list[BindingResponse])
async def list_server_bindings(
    server_id: str,
    admin_service: AdminServiceDep,
    _claims: AdminClaimsDep,
) -> list[ChannelBinding]:
    return await admin_service.list_for_server(server_id)


@router.put("/servers/{server_id}", status_code=status.HTTP_204_NO_CONTENT)
async def store_server(
    server_id: str,
    body: ServerUpsert,
    admin_service: AdminServiceDep,
    _claims: AdminClaimsDep,
) -> None:
    """Record a server the relay has joined."""
    await admin_service.store_server(
        server_id, body.name, body.admin.to_identity() if body.admin else None
    )


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    request: Request,
    admin_service: AdminServiceDep,
    _claims: AdminClaimsDep,
) -> StatsResponse:
    stats = await admin_service.stats()
    return StatsResponse(
        **asdict(stats),
        delivery=request.app.state.pipeline.metrics.as_dict(),
    )
