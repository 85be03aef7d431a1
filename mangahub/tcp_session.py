"""Per-connection sync sessions and their subscriptions."""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

DEFAULT_EVENT_TYPES = ("progress", "library")

Clock = Callable[[], datetime]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ClientSession:
    """State kept for one connected device."""

    session_id: str
    user_id: str
    device_type: str
    device_name: str
    connected_at: datetime
    last_heartbeat: datetime
    messages_sent: int = 0
    messages_received: int = 0
    last_sync_time: datetime | None = None
    last_sync_manga: str = ""
    last_sync_manga_title: str = ""
    last_sync_chapter: int = 0
    subscribed: bool = False
    event_types: list[str] = field(default_factory=list)


def sanitize(text: str) -> str:
    """Keep lower-case ASCII letters and digits, map spaces to underscores."""
    out = []
    for ch in text:
        if ch == " ":
            out.append("_")
        elif "a" <= ch <= "z" or "0" <= ch <= "9":
            out.append(ch)
        elif "A" <= ch <= "Z":
            out.append(ch.lower())
    return "".join(out) or "unknown"


def generate_session_id(device_name: str, device_type: str) -> str:
    """Build an id of the form ``sess_<name>_<type>_<DDMMYYYYTHHMMSS>_<hex4>``."""
    stamp = datetime.now().strftime("%d%m%YT%H%M%S")
    random_part = secrets.token_hex(3)[:4]
    return f"sess_{sanitize(device_name)}_{sanitize(device_type)}_{stamp}_{random_part}"


class SessionManager:
    """Thread-safe registry of sessions by id, client and user."""

    def __init__(self, clock: Clock = _now) -> None:
        self._clock = clock
        self._sessions: dict[str, ClientSession] = {}
        self._client_to_session: dict[str, str] = {}
        self._user_to_sessions: dict[str, list[str]] = {}
        self._lock = threading.RLock()

    def create_session(
        self, client_id: str, user_id: str, device_type: str, device_name: str
    ) -> ClientSession:
        now = self._clock()
        session = ClientSession(
            session_id=generate_session_id(device_name, device_type),
            user_id=user_id,
            device_type=device_type,
            device_name=device_name,
            connected_at=now,
            last_heartbeat=now,
        )
        with self._lock:
            self._sessions[session.session_id] = session
            self._client_to_session[client_id] = session.session_id
            self._user_to_sessions.setdefault(user_id, []).append(session.session_id)
        return session

    def _session_for_client(self, client_id: str) -> ClientSession | None:
        session_id = self._client_to_session.get(client_id)
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def get_session_by_client_id(self, client_id: str) -> ClientSession | None:
        with self._lock:
            return self._session_for_client(client_id)

    def update_heartbeat(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.last_heartbeat = self._clock()

    def increment_messages_sent(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.messages_sent += 1

    def increment_messages_received(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.messages_received += 1

    def update_last_sync(
        self, session_id: str, manga_id: str, manga_title: str, chapter: int
    ) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.last_sync_time = self._clock()
                session.last_sync_manga = manga_id
                session.last_sync_manga_title = manga_title
                session.last_sync_chapter = chapter

    def _detach_from_user(self, session: ClientSession) -> None:
        ids = self._user_to_sessions.get(session.user_id)
        if ids is None:
            return
        if session.session_id in ids:
            ids.remove(session.session_id)
        if not ids:
            del self._user_to_sessions[session.user_id]

    def remove_session(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is not None:
                self._detach_from_user(session)
            client_id = next(
                (cid for cid, sid in self._client_to_session.items() if sid == session_id),
                None,
            )
            if client_id is not None:
                del self._client_to_session[client_id]

    def remove_session_by_client_id(self, client_id: str) -> None:
        with self._lock:
            session_id = self._client_to_session.pop(client_id, None)
            if session_id is None:
                return
            session = self._sessions.pop(session_id, None)
            if session is not None:
                self._detach_from_user(session)

    def all_sessions(self) -> list[ClientSession]:
        with self._lock:
            return list(self._sessions.values())

    def cleanup_stale(self, timeout: timedelta | float) -> list[str]:
        """Drop sessions whose last heartbeat is older than ``timeout``; return their ids."""
        if not isinstance(timeout, timedelta):
            timeout = timedelta(seconds=timeout)
        now = self._clock()
        with self._lock:
            stale = [
                sid for sid, s in self._sessions.items() if now - s.last_heartbeat > timeout
            ]
            for sid in stale:
                session = self._sessions.pop(sid)
                self._detach_from_user(session)
            for cid in [c for c, sid in self._client_to_session.items() if sid in stale]:
                del self._client_to_session[cid]
        return stale

    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def user_device_count(self, user_id: str) -> int:
        with self._lock:
            return sum(
                1 for sid in self._user_to_sessions.get(user_id, []) if sid in self._sessions
            )

    def subscribe(self, client_id: str, event_types: list[str] | None) -> bool:
        """Mark the client's session subscribed; defaults to progress and library events."""
        with self._lock:
            session = self._session_for_client(client_id)
            if session is None:
                return False
            session.subscribed = True
            session.event_types = list(event_types) if event_types else list(DEFAULT_EVENT_TYPES)
            return True

    def unsubscribe(self, client_id: str) -> bool:
        with self._lock:
            session = self._session_for_client(client_id)
            if session is None:
                return False
            session.subscribed = False
            session.event_types = []
            return True

    def subscribed_clients(self) -> list[str]:
        with self._lock:
            return [
                cid
                for cid, sid in self._client_to_session.items()
                if sid in self._sessions and self._sessions[sid].subscribed
            ]

    def is_subscribed(self, client_id: str) -> bool:
        with self._lock:
            session = self._session_for_client(client_id)
            return session is not None and session.subscribed