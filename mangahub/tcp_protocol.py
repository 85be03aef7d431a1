"""Newline-delimited JSON messages exchanged with TCP sync clients."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .udp_protocol import _rfc3339_now


def _is_empty(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) == 0
    if isinstance(value, (int, float)):
        return value == 0
    return False


def _to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        out: dict[str, Any] = {}
        for f in dataclasses.fields(value):
            item = getattr(value, f.name)
            if f.metadata.get("omitempty") and _is_empty(item):
                continue
            out[f.metadata.get("json", f.name)] = _to_jsonable(item)
        return out
    if isinstance(value, Enum):
        return _to_jsonable(value.value)
    if isinstance(value, dict):
        # Plain mappings are written with their keys in sorted order.
        return {str(k): _to_jsonable(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    return value


def _dumps(value: Any) -> str:
    return json.dumps(_to_jsonable(value), separators=(",", ":"), ensure_ascii=False)


def _omit(json_name: str | None = None, **kwargs: Any) -> Any:
    metadata: dict[str, Any] = {"omitempty": True}
    if json_name:
        metadata["json"] = json_name
    return field(metadata=metadata, **kwargs)


def _named(json_name: str, **kwargs: Any) -> Any:
    return field(metadata={"json": json_name}, **kwargs)


@dataclass
class Message:
    """A TCP message; ``payload`` holds the decoded JSON payload."""

    type: str
    payload: Any = None

    def to_bytes(self) -> bytes:
        """Encode as one JSON line terminated by a newline."""
        line = _dumps({"type": self.type, "payload": self.payload})
        # Keep "type" first, as clients expect it on the wire.
        text = '{"type":' + json.dumps(self.type, ensure_ascii=False) + ',"payload":'
        text += _dumps(self.payload) + "}"
        assert json.loads(text) == json.loads(line)
        return (text + "\n").encode("utf-8")


@dataclass
class AuthPayload:
    token: str = ""


@dataclass
class SyncProgressPayload:
    user_id: str = ""
    manga_id: str = ""
    current_chapter: int = 0
    status: str = ""


@dataclass
class GetProgressPayload:
    manga_id: str = ""


@dataclass
class AddToLibraryPayload:
    manga_id: str = ""
    status: str = ""


@dataclass
class RemoveFromLibraryPayload:
    manga_id: str = ""


@dataclass
class ConnectPayload:
    """Sent when establishing a sync connection."""

    device_type: str = ""
    device_name: str = ""


@dataclass
class DisconnectPayload:
    """Sent when gracefully closing a connection."""

    reason: str = _omit(default="")


@dataclass
class LastSyncInfo:
    manga_id: str = ""
    manga_title: str = ""
    chapter: int = 0
    timestamp: str = ""


@dataclass
class StatusResponsePayload:
    """Connection status reported back to a client."""

    connection_status: str = ""
    server_address: str = ""
    uptime: int = _named("uptime_seconds", default=0)
    last_heartbeat: str = ""
    session_id: str = ""
    devices_online: int = 0
    messages_sent: int = 0
    messages_received: int = 0
    last_sync: LastSyncInfo | None = _omit(default=None)
    network_quality: str = ""
    rtt: int = _named("rtt_ms", default=0)


@dataclass
class SubscribeUpdatesPayload:
    event_types: list[str] = _omit(default_factory=list)


@dataclass
class UpdateEventPayload:
    """A real-time sync update pushed to subscribed clients."""

    timestamp: str = ""
    direction: str = ""
    device_type: str = ""
    device_name: str = ""
    manga_title: str = ""
    chapter: int = 0
    action: str = ""
    conflict_msg: str = _omit(default="")


def parse_message(data: bytes | str) -> Message:
    """Decode one message; raises ValueError when it is malformed or untyped."""
    text = bytes(data).decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
    raw = json.loads(text)
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("message must be a JSON object")
    msg_type = raw.get("type")
    if msg_type is None:
        msg_type = ""
    if not isinstance(msg_type, str):
        raise ValueError("field 'type' must be a string")
    if not msg_type:
        raise ValueError("message type is required")
    return Message(type=msg_type, payload=raw.get("payload"))


def create_data_message(msg_type: str, data: Any) -> bytes:
    return Message(type=msg_type, payload=_to_jsonable(data)).to_bytes()


def create_error_message(err_msg: str) -> bytes:
    return create_data_message("error", {"message": err_msg})


def create_success_message(success_msg: str) -> bytes:
    return create_data_message("success", {"message": success_msg})


def create_pong_message() -> bytes:
    return create_data_message("pong", {})


def create_heartbeat_message() -> bytes:
    return create_data_message("heartbeat", {})


def create_connect_response_message(session_id: str, device_type: str) -> bytes:
    return create_data_message(
        "connected",
        {
            "session_id": session_id,
            "device_type": device_type,
            "connected_at": _rfc3339_now(),
        },
    )


def create_disconnect_response_message() -> bytes:
    return create_success_message("Disconnected successfully")


def create_status_response_message(status: StatusResponsePayload) -> bytes:
    return create_data_message("status", status)


def create_update_event_message(event: UpdateEventPayload) -> bytes:
    return create_data_message("update_event", event)