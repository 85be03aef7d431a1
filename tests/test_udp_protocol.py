import json
import re

import pytest

from mangahub.udp_protocol import (
    Message,
    NotificationData,
    create_error_message,
    create_heartbeat_message,
    create_notification_message,
    create_register_message,
    create_subscribe_message,
    create_success_message,
    create_unregister_message,
    parse_message,
)

TIMESTAMP = re.compile(r"^\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d(Z|[+-]\d\d:\d\d)$")


@pytest.mark.parametrize(
    "raw, expected_type",
    [
        (
            '{"type":"register","data":{"token":"token"},"timestamp":"2025-11-12T10:00:00Z"}',
            "register",
        ),
        (
            '{"type":"heartbeat","data":{"client_id":"client1"},"timestamp":"2025-11-12T10:00:00Z"}',
            "heartbeat",
        ),
    ],
)
def test_parse_valid_messages(raw, expected_type):
    msg = parse_message(raw.encode())
    assert msg.type == expected_type
    assert msg.timestamp == "2025-11-12T10:00:00Z"


@pytest.mark.parametrize("raw", [b"{invalid json}", b""])
def test_parse_invalid_messages(raw):
    with pytest.raises(ValueError):
        parse_message(raw)


def test_parse_rejects_non_string_type():
    with pytest.raises(ValueError):
        parse_message(b'{"type": 5}')


def test_create_register_message():
    msg = parse_message(create_register_message("token"))
    assert msg.type == "register"
    assert msg.data == {"token": "token"}
    assert TIMESTAMP.match(msg.timestamp)


def test_create_unregister_message():
    raw = create_unregister_message()
    msg = parse_message(raw)
    assert msg.type == "unregister"
    assert "data" not in json.loads(raw)


def test_create_subscribe_message():
    event_types = ["progress_update", "library_update"]
    msg = parse_message(create_subscribe_message(event_types))
    assert msg.type == "subscribe"
    assert msg.data["event_types"] == event_types


def test_create_heartbeat_message():
    msg = parse_message(create_heartbeat_message("client-123"))
    assert msg.type == "heartbeat"
    assert msg.data["client_id"] == "client-123"


def test_create_notification_message():
    data = {"manga_id": "manga-1", "chapter_id": 42, "status": "reading"}
    msg = parse_message(create_notification_message("user-123", "progress_update", data))
    assert msg.type == "notification"
    assert msg.event_type == "progress_update"
    assert msg.user_id == "user-123"
    assert msg.data == data


def test_notification_data_omits_empty_fields():
    raw = create_notification_message("u", "e", NotificationData(manga_id="m1"))
    assert json.loads(raw)["data"] == {"manga_id": "m1"}


def test_create_success_message():
    msg = parse_message(create_success_message("Operation successful"))
    assert msg.type == "success"
    assert msg.data["message"] == "Operation successful"


def test_create_error_message():
    msg = parse_message(create_error_message("UDP-004", "Authentication failed"))
    assert msg.type == "error"
    assert msg.data == {"code": "UDP-004", "message": "Authentication failed"}


def test_message_round_trip_and_field_order():
    original = Message(
        type="notification",
        event_type="library_update",
        user_id="u1",
        data={"a": 1},
        timestamp="2025-11-12T10:00:00Z",
    )
    raw = original.to_bytes()
    assert list(json.loads(raw)) == ["type", "event_type", "user_id", "data", "timestamp"]
    assert parse_message(raw) == original


def test_empty_optional_fields_are_omitted():
    raw = Message(type="ping", timestamp="t").to_bytes()
    assert json.loads(raw) == {"type": "ping", "timestamp": "t"}