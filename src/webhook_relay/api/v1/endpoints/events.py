"""Inbound gateway events."""

from __future__ import annotations

from fastapi import APIRouter, status

from webhook_relay.api.v1.dependencies import AdminClaimsDep, PipelineDep
from webhook_relay.schemas.event import EventAccepted, GatewayEventIn

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", response_model=EventAccepted, status_code=status.HTTP_202_ACCEPTED)
async def submit_event(
    body: GatewayEventIn,
    pipeline: PipelineDep,
    _claims: AdminClaimsDep,
) -> EventAccepted:
    """Schedule delivery of one gateway event.

    The response does not wait for the webhook; per-channel ordering is kept
    by the pipeline.
    """
    event = body.to_event()
    pipeline.dispatch(event)
    return EventAccepted(event_type=event.event_type, channel_id=event.channel_id)
