"""User profile and reading-library operations backed by the local database."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Protocol

from .manga_external import Manga
from .manga_handler import HandlerError

Clock = Callable[[], datetime]

LIBRARY_STATUSES = ("reading", "completed", "plan_to_read")

_LIBRARY_QUERY = """
    SELECT m.id, m.title, m.author, m.genres, m.status, m.total_chapters,
           m.description, m.cover_url,
           up.current_chapter, up.status, up.updated_at
    FROM user_progress up
    JOIN manga m ON up.manga_id = m.id
    WHERE up.user_id = ?
    ORDER BY up.updated_at DESC
"""


def _now() -> datetime:
    return datetime.now(timezone.utc)


class UserError(HandlerError):
    """A user request failed; ``status_code`` is the HTTP status to answer with."""


@dataclass
class MangaProgress:
    """A manga in a user's library with the user's progress on it."""

    manga: Manga
    current_chapter: int = 0
    status: str = ""
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "manga": self.manga.to_dict(),
            "current_chapter": self.current_chapter,
            "status": self.status,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class UserLibrary:
    """A user's library split by reading status."""

    reading: list[MangaProgress] = field(default_factory=list)
    completed: list[MangaProgress] = field(default_factory=list)
    plan_to_read: list[MangaProgress] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reading": [p.to_dict() for p in self.reading],
            "completed": [p.to_dict() for p in self.completed],
            "plan_to_read": [p.to_dict() for p in self.plan_to_read],
        }


@dataclass(frozen=True)
class LibraryUpdateEvent:
    user_id: str
    manga_id: str
    action: str


@dataclass(frozen=True)
class ProgressUpdateEvent:
    user_id: str
    manga_id: str
    chapter_id: int
    status: str
    last_read_date: datetime


class UpdateNotifier(Protocol):
    """Receives library and progress changes, e.g. to push them to devices."""

    def notify_library_update(self, event: LibraryUpdateEvent) -> None: ...

    def notify_progress_update(self, event: ProgressUpdateEvent) -> None: ...


def _require_user(user_id: str) -> None:
    if not user_id:
        raise UserError(401, "User not authenticated")


def _text_field(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise UserError(400, f"field {key!r} must be a string")
    return value


def _parse_time(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _row_to_progress(row: tuple[Any, ...]) -> MangaProgress | None:
    if any(value is None for value in row):
        return None
    (manga_id, title, author, genres_json, status, chapters, description, cover,
     current_chapter, progress_status, updated_at) = row
    try:
        total_chapters = int(chapters)
        current = int(current_chapter)
    except (TypeError, ValueError):
        return None
    updated = _parse_time(updated_at)
    if updated is None:
        return None
    genres: list[str] = []
    if genres_json:
        try:
            decoded = json.loads(genres_json)
        except ValueError:
            decoded = None
        if isinstance(decoded, list) and all(isinstance(g, str) for g in decoded):
            genres = decoded
    manga = Manga(
        id=str(manga_id),
        title=str(title),
        author=str(author),
        genres=genres,
        status=str(status),
        total_chapters=total_chapters,
        description=str(description),
        cover_url=str(cover),
    )
    return MangaProgress(
        manga=manga,
        current_chapter=current,
        status=str(progress_status),
        updated_at=updated,
    )


class UserHandler:
    """Answers user requests; methods return results or raise UserError."""

    def __init__(
        self,
        db: sqlite3.Connection,
        notifier: UpdateNotifier | None = None,
        clock: Clock = _now,
    ) -> None:
        self.db = db
        self.notifier = notifier
        self._clock = clock

    def get_profile(self, user_id: str) -> dict[str, Any]:
        """Return the user's id, username, email and creation time."""
        _require_user(user_id)
        try:
            row = self.db.execute(
                "SELECT id, username, email, created_at FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise UserError(404, "User not found") from exc
        if row is None:
            raise UserError(404, "User not found")
        uid, username, email, created_at = row
        return {
            "id": str(uid),
            "username": username,
            "email": email,
            "created_at": created_at,
        }

    def add_to_library(self, user_id: str, manga_id: str, status: str) -> dict[str, str]:
        """Add a manga to the library, or change its status if already there."""
        _require_user(user_id)
        manga_id = _text_field({"manga_id": manga_id}, "manga_id")
        status = _text_field({"status": status}, "status")
        if not manga_id:
            raise UserError(400, "manga_id is required")
        try:
            (exists,) = self.db.execute(
                "SELECT EXISTS(SELECT 1 FROM manga WHERE id = ?)", (manga_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise UserError(404, "Manga not found") from exc
        if not exists:
            raise UserError(404, "Manga not found")

        now = self._clock().isoformat()
        try:
            with self.db:
                self.db.execute(
                    "INSERT INTO user_progress "
                    "(user_id, manga_id, current_chapter, status, updated_at) "
                    "VALUES (?, ?, 0, ?, ?) "
                    "ON CONFLICT(user_id, manga_id) DO UPDATE SET status = ?, updated_at = ?",
                    (user_id, manga_id, status, now, status, now),
                )
        except sqlite3.Error as exc:
            raise UserError(500, "Failed to add manga to library") from exc

        if self.notifier is not None:
            self.notifier.notify_library_update(
                LibraryUpdateEvent(user_id=user_id, manga_id=manga_id, action="added")
            )
        return {"message": "Manga added to library successfully"}

    def get_library(self, user_id: str) -> UserLibrary:
        """Return the library, newest updates first, grouped by status."""
        _require_user(user_id)
        try:
            rows = self.db.execute(_LIBRARY_QUERY, (user_id,)).fetchall()
        except sqlite3.Error as exc:
            raise UserError(500, "Database error") from exc

        library = UserLibrary()
        buckets = {
            "reading": library.reading,
            "completed": library.completed,
            "plan_to_read": library.plan_to_read,
        }
        for progress in map(_row_to_progress, rows):
            if progress is None:
                continue
            bucket = buckets.get(progress.status)
            if bucket is not None:
                bucket.append(progress)
        return library

    def update_progress(
        self, user_id: str, manga_id: str, current_chapter: int, status: str = ""
    ) -> dict[str, str]:
        """Set the current chapter, and the status when one is given."""
        _require_user(user_id)
        manga_id = _text_field({"manga_id": manga_id}, "manga_id")
        status = _text_field({"status": status}, "status")
        if not manga_id:
            raise UserError(400, "manga_id is required")
        if isinstance(current_chapter, bool) or not isinstance(current_chapter, int):
            raise UserError(400, "field 'current_chapter' must be an integer")

        try:
            (exists,) = self.db.execute(
                "SELECT EXISTS(SELECT 1 FROM user_progress WHERE user_id = ? AND manga_id = ?)",
                (user_id, manga_id),
            ).fetchone()
        except sqlite3.Error as exc:
            raise UserError(404, "Manga not in library") from exc
        if not exists:
            raise UserError(404, "Manga not in library")

        now = self._clock()
        query = "UPDATE user_progress SET current_chapter = ?, updated_at = ?"
        args: list[Any] = [current_chapter, now.isoformat()]
        if status:
            query += ", status = ?"
            args.append(status)
        query += " WHERE user_id = ? AND manga_id = ?"
        args.extend([user_id, manga_id])
        try:
            with self.db:
                self.db.execute(query, args)
        except sqlite3.Error as exc:
            raise UserError(500, "Failed to update progress") from exc

        if self.notifier is not None:
            self.notifier.notify_progress_update(
                ProgressUpdateEvent(
                    user_id=user_id,
                    manga_id=manga_id,
                    chapter_id=current_chapter,
                    status=status,
                    last_read_date=now,
                )
            )
        return {"message": "Progress updated successfully"}

    def remove_from_library(self, user_id: str, manga_id: str) -> dict[str, str]:
        """Remove a manga from the library."""
        _require_user(user_id)
        if not manga_id:
            raise UserError(400, "Manga ID is required")
        try:
            with self.db:
                cursor = self.db.execute(
                    "DELETE FROM user_progress WHERE user_id = ? AND manga_id = ?",
                    (user_id, manga_id),
                )
        except sqlite3.Error as exc:
            raise UserError(500, "Failed to remove manga") from exc
        if cursor.rowcount == 0:
            raise UserError(404, "Manga not in library")

        if self.notifier is not None:
            self.notifier.notify_library_update(
                LibraryUpdateEvent(user_id=user_id, manga_id=manga_id, action="removed")
            )
        return {"message": "Manga removed from library successfully"}