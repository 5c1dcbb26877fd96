import pytest

from webhook_relay.services.events import EventKind, GatewayEvent, build_payload


def _event(kind: EventKind, in_thread: bool = False, **fields) -> GatewayEvent:
    return GatewayEvent(
        kind=kind,
        channel_id="200",
        author_id="42",
        author_name="someone",
        in_thread=in_thread,
        fields=fields,
    )


@pytest.mark.parametrize(
    ("kind", "in_thread", "expected"),
    [
        (EventKind.MESSAGE, False, "message_create"),
        (EventKind.MESSAGE, True, "thread_message"),
        (EventKind.REACTION_ADD, False, "reaction_add"),
        (EventKind.REACTION_ADD, True, "thread_reaction_add"),
        (EventKind.REACTION_REMOVE, True, "thread_reaction_remove"),
        (EventKind.THREAD_CREATE, True, "thread_create"),
        (EventKind.THREAD_MEMBER_JOIN, False, "thread_member_join"),
        (EventKind.THREAD_STARTER_MESSAGE, True, "thread_starter_message"),
    ],
)
def test_event_type_wire_names(kind: EventKind, in_thread: bool, expected: str):
    assert _event(kind, in_thread).event_type == expected


def test_payload_envelope():
    payload = build_payload(_event(EventKind.MESSAGE, content="hi"), timestamp_ms=1700000000000)

    assert payload == {
        "event_type": "message_create",
        "timestamp": 1700000000000,
        "content": "hi",
    }


def test_envelope_keys_win_over_fields():
    event = _event(EventKind.THREAD_DELETE, event_type="spoofed", timestamp=1, thread={"id": "9"})

    payload = build_payload(event, timestamp_ms=5)

    assert payload["event_type"] == "thread_delete"
    assert payload["timestamp"] == 5
    assert payload["thread"] == {"id": "9"}
