"""JSON messages exchanged with UDP notification clients."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


def _rfc3339_now() -> str:
    stamp = datetime.now().astimezone().isoformat(timespec="seconds")
    if stamp.endswith("+00:00"):
        stamp = stamp[:-6] + "Z"
    return stamp


def _is_empty(value: Any) -> bool:
    return value is None or (not isinstance(value, bool) and value in ("", 0)) or (
        isinstance(value, (list, dict, tuple)) and not value
    ) or value is False


def _to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        out = {}
        for f in dataclasses.fields(value):
            item = getattr(value, f.name)
            if f.metadata.get("omitempty") and _is_empty(item):
                continue
            out[f.name] = _to_jsonable(item)
        return out
    if isinstance(value, dict):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    return value


def _dumps(value: Any) -> bytes:
    return json.dumps(
        _to_jsonable(value), separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


@dataclass
class RegisterPayload:
    token: str


@dataclass
class SubscribePayload:
    event_types: list[str]


@dataclass
class HeartbeatPayload:
    client_id: str


@dataclass
class NotificationData:
    manga_id: str = field(default="", metadata={"omitempty": True})
    chapter_id: int = field(default=0, metadata={"omitempty": True})
    status: str = field(default="", metadata={"omitempty": True})
    action: str = field(default="", metadata={"omitempty": True})


@dataclass
class SuccessPayload:
    message: str


@dataclass
class ErrorPayload:
    code: str
    message: str


@dataclass
class Message:
    """A UDP message; ``data`` holds the decoded JSON payload or None."""

    type: str
    event_type: str = ""
    user_id: str = ""
    data: Any = None
    timestamp: str = ""

    def to_bytes(self) -> bytes:
        obj: dict[str, Any] = {"type": self.type}
        if self.event_type:
            obj["event_type"] = self.event_type
        if self.user_id:
            obj["user_id"] = self.user_id
        if self.data is not None:
            obj["data"] = self.data
        obj["timestamp"] = self.timestamp
        return _dumps(obj)


def parse_message(data: bytes | str) -> Message:
    """Decode a message; raises ValueError on malformed input."""
    text = bytes(data).decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
    raw = json.loads(text)
    if raw is None:
        return Message(type="")
    if not isinstance(raw, dict):
        raise ValueError("message must be a JSON object")

    def text_field(key: str) -> str:
        value = raw.get(key)
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError(f"field {key!r} must be a string")
        return value

    return Message(
        type=text_field("type"),
        event_type=text_field("event_type"),
        user_id=text_field("user_id"),
        data=raw.get("data"),
        timestamp=text_field("timestamp"),
    )


def create_register_message(token: str) -> bytes:
    return Message(
        type="register", data=RegisterPayload(token=token), timestamp=_rfc3339_now()
    ).to_bytes()


def create_unregister_message() -> bytes:
    return Message(type="unregister", timestamp=_rfc3339_now()).to_bytes()


def create_subscribe_message(event_types: list[str]) -> bytes:
    return Message(
        type="subscribe",
        data=SubscribePayload(event_types=list(event_types)),
        timestamp=_rfc3339_now(),
    ).to_bytes()


def create_heartbeat_message(client_id: str) -> bytes:
    return Message(
        type="heartbeat",
        data=HeartbeatPayload(client_id=client_id),
        timestamp=_rfc3339_now(),
    ).to_bytes()


def create_notification_message(user_id: str, event_type: str, data: Any) -> bytes:
    # Encode the payload eagerly so unserialisable data fails here.
    payload = json.loads(_dumps(data))
    return Message(
        type="notification",
        event_type=event_type,
        user_id=user_id,
        data=payload,
        timestamp=_rfc3339_now(),
    ).to_bytes()


def create_success_message(message: str) -> bytes:
    return Message(
        type="success", data=SuccessPayload(message=message), timestamp=_rfc3339_now()
    ).to_bytes()


def create_error_message(code: str, message: str) -> bytes:
    return Message(
        type="error",
        data=ErrorPayload(code=code, message=message),
        timestamp=_rfc3339_now(),
    ).to_bytes()