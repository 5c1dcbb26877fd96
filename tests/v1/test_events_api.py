# tests/v1/test_events_api.py
"""Tests for the gateway event intake endpoint."""

import json
import time

import httpx
from fastapi import status

ENDPOINT_URL = "https://hooks.example.com/relay"


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_event_is_accepted_and_delivered(client, auth_headers, http_mock, bound_channel) -> None:
    """Events are acknowledged immediately and delivered in the background."""
    bound_channel()
    route = http_mock.post(ENDPOINT_URL).mock(return_value=httpx.Response(200))

    response = client.post(
        "/api/v1/events",
        json={
            "kind": "message",
            "channel_id": "200",
            "author_id": "42",
            "author_name": "someone",
            "server_id": "100",
            "fields": {"content": "hello"},
        },
        headers=auth_headers,
    )

    assert response.status_code == status.HTTP_202_ACCEPTED
    assert response.json() == {
        "event_type": "message_create",
        "channel_id": "200",
        "status": "accepted",
    }
    assert _wait_for(lambda: route.called)
    body = json.loads(route.calls.last.request.content)
    assert body["event_type"] == "message_create"
    assert body["content"] == "hello"


def test_thread_event_type_in_response(client, auth_headers, http_mock) -> None:
    """Thread context changes the reported event type."""
    http_mock.post(ENDPOINT_URL).mock(return_value=httpx.Response(200))

    response = client.post(
        "/api/v1/events",
        json={
            "kind": "reaction_add",
            "channel_id": "200",
            "author_id": "42",
            "author_name": "someone",
            "in_thread": True,
        },
        headers=auth_headers,
    )

    assert response.status_code == status.HTTP_202_ACCEPTED
    assert response.json()["event_type"] == "thread_reaction_add"


def test_unknown_event_kind_is_rejected(client, auth_headers) -> None:
    """Event kinds outside the supported set fail validation."""
    response = client.post(
        "/api/v1/events",
        json={"kind": "presence_update", "channel_id": "200", "author_id": "1", "author_name": "x"},
        headers=auth_headers,
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_events_require_authentication(client) -> None:
    """The intake endpoint is not public."""
    response = client.post("/api/v1/events", json={})
    assert response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN)
