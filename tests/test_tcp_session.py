from datetime import datetime, timedelta, timezone

import pytest

from mangahub.tcp_session import (
    SessionManager,
    generate_session_id,
    sanitize,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manager(clock: FakeClock) -> SessionManager:
    return SessionManager(clock=clock)


def test_sanitize_empty_gives_unknown():
    assert sanitize("") == "unknown"
    assert sanitize("!!!") == "unknown"


def test_sanitize_lowercases_and_replaces_spaces():
    assert sanitize("My Phone!") == "my_phone"


def test_generate_session_id_shape():
    sid = generate_session_id("My Phone", "mobile")
    assert sid.startswith("sess_my_phone_mobile_")
    parts = sid.split("_")
    stamp, random_part = parts[-2], parts[-1]
    assert len(stamp) == 15 and stamp[8] == "T"
    assert len(random_part) == 4
    int(random_part, 16)


def test_create_session_fields(manager, clock):
    session = manager.create_session("c1", "u1", "desktop", "Work PC")
    assert session.user_id == "u1"
    assert session.device_type == "desktop"
    assert session.device_name == "Work PC"
    assert session.connected_at == clock.now
    assert session.messages_sent == 0
    assert manager.get_session_by_client_id("c1") is session
    assert manager.session_count() == 1


def test_unknown_client_has_no_session(manager):
    assert manager.get_session_by_client_id("missing") is None


def test_counters_and_last_sync(manager, clock):
    session = manager.create_session("c1", "u1", "web", "Browser")
    manager.increment_messages_sent(session.session_id)
    manager.increment_messages_sent(session.session_id)
    manager.increment_messages_received(session.session_id)
    clock.advance(5)
    manager.update_last_sync(session.session_id, "m1", "Title", 12)
    assert session.messages_sent == 2
    assert session.messages_received == 1
    assert session.last_sync_manga == "m1"
    assert session.last_sync_manga_title == "Title"
    assert session.last_sync_chapter == 12
    assert session.last_sync_time == clock.now


def test_user_device_count_and_removal(manager):
    s1 = manager.create_session("c1", "u1", "mobile", "Phone")
    manager.create_session("c2", "u1", "desktop", "PC")
    manager.create_session("c3", "u2", "web", "Browser")
    assert manager.user_device_count("u1") == 2
    manager.remove_session(s1.session_id)
    assert manager.user_device_count("u1") == 1
    assert manager.get_session_by_client_id("c1") is None
    manager.remove_session_by_client_id("c2")
    assert manager.user_device_count("u1") == 0
    assert manager.session_count() == 1
    assert [s.user_id for s in manager.all_sessions()] == ["u2"]


def test_subscribe_defaults_and_unsubscribe(manager):
    manager.create_session("c1", "u1", "mobile", "Phone")
    assert manager.subscribe("c1", []) is True
    session = manager.get_session_by_client_id("c1")
    assert session.event_types == ["progress", "library"]
    assert manager.is_subscribed("c1") is True
    assert manager.subscribed_clients() == ["c1"]
    assert manager.unsubscribe("c1") is True
    assert manager.is_subscribed("c1") is False
    assert session.event_types == []
    assert manager.subscribed_clients() == []


def test_subscribe_explicit_types_and_unknown_client(manager):
    manager.create_session("c1", "u1", "mobile", "Phone")
    assert manager.subscribe("c1", ["progress"]) is True
    assert manager.get_session_by_client_id("c1").event_types == ["progress"]
    assert manager.subscribe("nobody", ["progress"]) is False
    assert manager.unsubscribe("nobody") is False
    assert manager.is_subscribed("nobody") is False


def test_cleanup_stale(manager, clock):
    old = manager.create_session("c1", "u1", "mobile", "Phone")
    clock.advance(100)
    fresh = manager.create_session("c2", "u1", "desktop", "PC")
    stale = manager.cleanup_stale(timedelta(seconds=50))
    assert stale == [old.session_id]
    assert manager.session_count() == 1
    assert manager.get_session_by_client_id("c1") is None
    assert manager.get_session_by_client_id("c2") is fresh
    assert manager.user_device_count("u1") == 1


def test_update_heartbeat_keeps_session_alive(manager, clock):
    session = manager.create_session("c1", "u1", "mobile", "Phone")
    clock.advance(100)
    manager.update_heartbeat(session.session_id)
    assert session.last_heartbeat == clock.now
    assert manager.cleanup_stale(50) == []
    assert manager.session_count() == 1