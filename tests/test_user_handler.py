import json
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from mangahub.user_handler import (
    LibraryUpdateEvent,
    ProgressUpdateEvent,
    UserError,
    UserHandler,
)

SCHEMA = """
CREATE TABLE users (
    id TEXT PRIMARY KEY, username TEXT, email TEXT, created_at TEXT
);
CREATE TABLE manga (
    id TEXT PRIMARY KEY, title TEXT, author TEXT, genres TEXT, status TEXT,
    total_chapters INTEGER, description TEXT, cover_url TEXT
);
CREATE TABLE user_progress (
    user_id TEXT, manga_id TEXT, current_chapter INTEGER, status TEXT,
    updated_at TEXT, UNIQUE(user_id, manga_id)
);
"""


class Recorder:
    def __init__(self):
        self.library = []
        self.progress = []

    def notify_library_update(self, event):
        self.library.append(event)

    def notify_progress_update(self, event):
        self.progress.append(event)


class StepClock:
    def __init__(self):
        self.current = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.current += timedelta(minutes=1)
        return self.current


@pytest.fixture
def db():
    conn = sqlite3.connect(":memory:")
    conn.executescript(SCHEMA)
    conn.execute(
        "INSERT INTO users VALUES (?, ?, ?, ?)",
        ("u1", "alice", "alice@example.com", "2024-01-01T00:00:00+00:00"),
    )
    for mid, title in (("m1", "One Piece"), ("m2", "Naruto"), ("m3", "Bleach")):
        conn.execute(
            "INSERT INTO manga VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (mid, title, "Author", json.dumps(["Action", "Adventure"]), "ongoing", 100, "desc", "cover"),
        )
    conn.commit()
    yield conn
    conn.close()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def handler(db, recorder):
    return UserHandler(db, recorder, clock=StepClock())


def test_profile_requires_authentication(handler):
    with pytest.raises(UserError) as info:
        handler.get_profile("")
    assert info.value.status_code == 401
    assert info.value.message == "User not authenticated"


def test_profile_found(handler):
    profile = handler.get_profile("u1")
    assert profile["username"] == "alice"
    assert profile["email"] == "alice@example.com"
    assert profile["id"] == "u1"


def test_profile_missing_user(handler):
    with pytest.raises(UserError) as info:
        handler.get_profile("nobody")
    assert info.value.status_code == 404
    assert info.value.message == "User not found"


def test_add_unknown_manga(handler, recorder):
    with pytest.raises(UserError) as info:
        handler.add_to_library("u1", "missing", "reading")
    assert info.value.status_code == 404
    assert info.value.message == "Manga not found"
    assert recorder.library == []


def test_add_and_list(handler, recorder):
    result = handler.add_to_library("u1", "m1", "reading")
    assert result == {"message": "Manga added to library successfully"}
    library = handler.get_library("u1")
    assert [p.manga.id for p in library.reading] == ["m1"]
    assert library.reading[0].current_chapter == 0
    assert library.reading[0].manga.genres == ["Action", "Adventure"]
    assert library.completed == [] and library.plan_to_read == []
    assert recorder.library == [LibraryUpdateEvent(user_id="u1", manga_id="m1", action="added")]


def test_add_twice_updates_status(handler):
    handler.add_to_library("u1", "m1", "reading")
    handler.add_to_library("u1", "m1", "completed")
    library = handler.get_library("u1")
    assert library.reading == []
    assert [p.manga.id for p in library.completed] == ["m1"]


def test_library_newest_first(handler):
    handler.add_to_library("u1", "m1", "plan_to_read")
    handler.add_to_library("u1", "m2", "plan_to_read")
    handler.add_to_library("u1", "m3", "plan_to_read")
    library = handler.get_library("u1")
    assert [p.manga.id for p in library.plan_to_read] == ["m3", "m2", "m1"]
    dates = [p.updated_at for p in library.plan_to_read]
    assert dates == sorted(dates, reverse=True)


def test_library_ignores_unknown_status(handler):
    handler.add_to_library("u1", "m1", "dropped")
    library = handler.get_library("u1")
    assert library.to_dict() == {"reading": [], "completed": [], "plan_to_read": []}


def test_update_progress_not_in_library(handler, recorder):
    with pytest.raises(UserError) as info:
        handler.update_progress("u1", "m1", 5)
    assert info.value.status_code == 404
    assert info.value.message == "Manga not in library"
    assert recorder.progress == []


def test_update_progress_keeps_status_when_empty(handler, recorder):
    handler.add_to_library("u1", "m1", "reading")
    result = handler.update_progress("u1", "m1", 42)
    assert result == {"message": "Progress updated successfully"}
    library = handler.get_library("u1")
    assert library.reading[0].current_chapter == 42
    event = recorder.progress[0]
    assert isinstance(event, ProgressUpdateEvent)
    assert (event.user_id, event.manga_id, event.chapter_id, event.status) == ("u1", "m1", 42, "")


def test_update_progress_changes_status(handler):
    handler.add_to_library("u1", "m1", "reading")
    handler.update_progress("u1", "m1", 100, "completed")
    library = handler.get_library("u1")
    assert library.reading == []
    assert library.completed[0].current_chapter == 100


def test_update_progress_rejects_non_integer(handler):
    handler.add_to_library("u1", "m1", "reading")
    with pytest.raises(UserError) as info:
        handler.update_progress("u1", "m1", "ten")
    assert info.value.status_code == 400


def test_remove_requires_id(handler):
    with pytest.raises(UserError) as info:
        handler.remove_from_library("u1", "")
    assert info.value.status_code == 400
    assert info.value.message == "Manga ID is required"


def test_remove_not_in_library(handler):
    with pytest.raises(UserError) as info:
        handler.remove_from_library("u1", "m1")
    assert info.value.status_code == 404


def test_remove_success(handler, recorder):
    handler.add_to_library("u1", "m1", "reading")
    result = handler.remove_from_library("u1", "m1")
    assert result == {"message": "Manga removed from library successfully"}
    assert handler.get_library("u1").reading == []
    assert recorder.library[-1] == LibraryUpdateEvent(user_id="u1", manga_id="m1", action="removed")


def test_libraries_are_per_user(handler):
    handler.add_to_library("u1", "m1", "reading")
    handler.add_to_library("u2", "m2", "reading")
    assert [p.manga.id for p in handler.get_library("u2").reading] == ["m2"]
    assert [p.manga.id for p in handler.get_library("u1").reading] == ["m1"]


def test_works_without_notifier(db):
    plain = UserHandler(db)
    plain.add_to_library("u1", "m2", "reading")
    plain.update_progress("u1", "m2", 3)
    assert plain.get_library("u1").reading[0].current_chapter == 3


def test_progress_to_dict_round_trip(handler):
    handler.add_to_library("u1", "m1", "reading")
    data = handler.get_library("u1").to_dict()
    entry = data["reading"][0]
    assert entry["manga"]["id"] == "m1"
    assert entry["status"] == "reading"
    assert datetime.fromisoformat(entry["updated_at"]).tzinfo is not None