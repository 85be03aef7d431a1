"""Manga catalogue operations backed by a local database and MyAnimeList."""

from __future__ import annotations

import json
import os
import re
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx

from .manga_external import (
    CLIENT_ID_ENV,
    ExternalSource,
    ExternalSourceError,
    Manga,
    external_source_from_env,
)

MAX_LIMIT = 100
RANKING_URL = "https://api.myanimelist.net/v2/manga/ranking"
RANKING_FIELDS = "id,title,authors{name,first_name,last_name},status,num_chapters"
FEATURED_LIMIT = 10
FEATURED_SECTIONS = (
    ("Top Ranked Manga", "all"),
    ("Most Popular Manga", "bypopularity"),
    ("Most Favorited Manga", "favorite"),
)

_COLUMNS = "id, title, author, genres, status, total_chapters, description, cover_url"
_INTEGER = re.compile(r"[+-]?[0-9]+")


class HandlerError(Exception):
    """A request failed; ``status_code`` is the HTTP status to answer with."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message}


@dataclass
class RankingManga:
    """One entry of a MyAnimeList ranking."""

    id: int = 0
    title: str = ""
    status: str = ""
    num_chapters: int = 0
    authors: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_node(cls, node: Mapping[str, Any]) -> RankingManga:
        authors = []
        for author in node.get("authors") or []:
            author_node = (author or {}).get("node") or {}
            authors.append(
                {
                    "node": {
                        "name": str(author_node.get("name") or ""),
                        "first_name": str(author_node.get("first_name") or ""),
                        "last_name": str(author_node.get("last_name") or ""),
                    }
                }
            )
        return cls(
            id=int(node.get("id") or 0),
            title=str(node.get("title") or ""),
            status=str(node.get("status") or ""),
            num_chapters=int(node.get("num_chapters") or 0),
            authors=authors,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "num_chapters": self.num_chapters,
            "authors": [
                {"node": dict(a.get("node", {}))} for a in self.authors
            ],
        }


def _parse_limit(value: int | str | None, default: int) -> int | None:
    """Read an integer the way a strict decimal parser does; None when invalid."""
    if value is None:
        return default
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _INTEGER.fullmatch(value):
        return int(value)
    return None


def _clamp_limit(value: int | str | None) -> int:
    limit = _parse_limit(value, MAX_LIMIT)
    if limit is None or limit <= 0 or limit > MAX_LIMIT:
        return MAX_LIMIT
    return limit


def _row_to_manga(row: tuple[Any, ...]) -> Manga | None:
    if any(value is None for value in row):
        return None
    manga_id, title, author, genres_json, status, chapters, description, cover = row
    try:
        total_chapters = int(chapters)
    except (TypeError, ValueError):
        return None
    genres: list[str] = []
    if genres_json:
        try:
            decoded = json.loads(genres_json)
        except ValueError:
            decoded = None
        if isinstance(decoded, list) and all(isinstance(g, str) for g in decoded):
            genres = decoded
    return Manga(
        id=str(manga_id),
        title=str(title),
        author=str(author),
        genres=genres,
        status=str(status),
        total_chapters=total_chapters,
        description=str(description),
        cover_url=str(cover),
    )


def _bind_manga(data: Any) -> Manga:
    if not isinstance(data, Mapping):
        raise HandlerError(400, "request body must be a JSON object")

    def text(key: str) -> str:
        value = data.get(key)
        if value is None:
            return ""
        if not isinstance(value, str):
            raise HandlerError(400, f"field {key!r} must be a string")
        return value

    chapters = data.get("total_chapters")
    if chapters is None:
        chapters = 0
    elif isinstance(chapters, bool) or not isinstance(chapters, int):
        raise HandlerError(400, "field 'total_chapters' must be an integer")

    genres = data.get("genres")
    if genres is None:
        genres = []
    elif not isinstance(genres, list) or not all(isinstance(g, str) for g in genres):
        raise HandlerError(400, "field 'genres' must be a list of strings")

    return Manga(
        id=text("id"),
        title=text("title"),
        author=text("author"),
        genres=list(genres),
        status=text("status"),
        total_chapters=chapters,
        description=text("description"),
        cover_url=text("cover_url"),
    )


class MangaHandler:
    """Answers manga requests; methods return JSON-ready bodies or raise HandlerError."""

    def __init__(
        self,
        db: sqlite3.Connection,
        external_source: ExternalSource | None = None,
        *,
        mal_client_id: str | None = None,
        http_client: httpx.Client | None = None,
        ranking_url: str = RANKING_URL,
    ) -> None:
        self.db = db
        self.external_source = external_source
        self._mal_client_id = mal_client_id
        self._http = http_client
        self.ranking_url = ranking_url

    @classmethod
    def from_env(cls, db: sqlite3.Connection, **kwargs: Any) -> MangaHandler:
        """Build a handler whose external source is configured from the environment."""
        try:
            source: ExternalSource | None = external_source_from_env()
        except ExternalSourceError:
            source = None
        return cls(db, source, **kwargs)

    @property
    def _client_id(self) -> str:
        if self._mal_client_id is not None:
            return self._mal_client_id
        return os.environ.get(CLIENT_ID_ENV, "")

    @property
    def _client(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client()
        return self._http

    def _query_mangas(self, query: str, args: list[Any]) -> list[Manga]:
        try:
            rows = self.db.execute(query, args).fetchall()
        except sqlite3.Error as exc:
            raise HandlerError(500, "Database error") from exc
        return [m for m in map(_row_to_manga, rows) if m is not None]

    @staticmethod
    def _listing(mangas: list[Manga]) -> dict[str, Any]:
        return {"mangas": [m.to_dict() for m in mangas], "count": len(mangas)}

    def search_manga(
        self,
        title: str = "",
        author: str = "",
        status: str = "",
        genre: str = "",
        limit: int = MAX_LIMIT,
        offset: int = 0,
    ) -> dict[str, Any]:
        """Search the local catalogue; text filters match substrings, status exactly."""
        if limit <= 0 or limit > MAX_LIMIT:
            limit = MAX_LIMIT
        query = f"SELECT {_COLUMNS} FROM manga WHERE 1=1"
        args: list[Any] = []
        if title:
            query += " AND title LIKE ?"
            args.append(f"%{title}%")
        if author:
            query += " AND author LIKE ?"
            args.append(f"%{author}%")
        if status:
            query += " AND status = ?"
            args.append(status)
        if genre:
            query += " AND genres LIKE ?"
            args.append(f"%{genre}%")
        query += " LIMIT ? OFFSET ?"
        args.extend([limit, offset])
        return self._listing(self._query_mangas(query, args))

    def search_external(
        self, query: str, limit: int | str | None = None, offset: int | str | None = None
    ) -> dict[str, Any]:
        """Search the external catalogue; a rejected query yields an empty result."""
        if self.external_source is None:
            raise HandlerError(503, "External manga source not configured")
        if not query:
            raise HandlerError(400, "Query parameter 'q' is required")
        if len(query.strip()) < 3:
            raise HandlerError(400, "Search query must be at least 3 characters")

        real_limit = _clamp_limit(limit)
        real_offset = _parse_limit(offset, 0)
        if real_offset is None or real_offset < 0:
            real_offset = 0

        try:
            mangas = self.external_source.search(query, real_limit, real_offset)
        except ExternalSourceError as exc:
            if "400" in str(exc):
                return {"mangas": [], "count": 0}
            raise HandlerError(500, str(exc)) from exc
        return self._listing(mangas)

    def get_manga_info(self, manga_id: str) -> dict[str, Any]:
        """Fetch one manga's full record from the external catalogue."""
        if self.external_source is None:
            raise HandlerError(503, "External manga source not configured")
        if not manga_id:
            raise HandlerError(400, "Manga ID is required")
        if not all("0" <= ch <= "9" for ch in manga_id):
            raise HandlerError(400, "Manga ID must be numeric")
        try:
            manga = self.external_source.get_manga_by_id(manga_id)
        except ExternalSourceError as exc:
            raise HandlerError(404, str(exc)) from exc
        return manga.to_dict()

    def get_manga_by_id(self, manga_id: str) -> dict[str, Any]:
        """Fetch one manga from the local catalogue."""
        try:
            row = self.db.execute(
                f"SELECT {_COLUMNS} FROM manga WHERE id = ?", (manga_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise HandlerError(500, "Database error") from exc
        if row is None:
            raise HandlerError(404, "Manga not found")
        manga = _row_to_manga(row)
        if manga is None:
            raise HandlerError(500, "Database error")
        return manga.to_dict()

    def create_manga(self, data: Any) -> dict[str, Any]:
        """Insert a manga from a JSON-like mapping and return the stored record."""
        manga = _bind_manga(data)
        if not manga.id or not manga.title:
            raise HandlerError(400, "ID and title are required")
        try:
            with self.db:
                self.db.execute(
                    f"INSERT INTO manga ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        manga.id,
                        manga.title,
                        manga.author,
                        json.dumps(manga.genres),
                        manga.status,
                        manga.total_chapters,
                        manga.description,
                        manga.cover_url,
                    ),
                )
        except sqlite3.Error as exc:
            if "UNIQUE constraint failed" in str(exc):
                raise HandlerError(409, "Manga with this ID already exists") from exc
            raise HandlerError(500, "Failed to create manga") from exc
        return manga.to_dict()

    def get_all_manga(self) -> dict[str, Any]:
        return self._listing(self._query_mangas(f"SELECT {_COLUMNS} FROM manga", []))

    def fetch_ranking(self, ranking_type: str, limit: int) -> list[RankingManga]:
        """Fetch one MyAnimeList ranking list."""
        params = {
            "ranking_type": ranking_type,
            "limit": str(limit),
            "fields": RANKING_FIELDS,
        }
        try:
            response = self._client.get(
                self.ranking_url,
                params=params,
                headers={"X-MAL-Client-ID": self._client_id},
            )
        except httpx.HTTPError as exc:
            raise ExternalSourceError(str(exc)) from exc
        if response.status_code != httpx.codes.OK:
            raise ExternalSourceError(
                f"MAL API returned status: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalSourceError(f"invalid response body: {exc}") from exc
        if not isinstance(payload, Mapping):
            payload = {}
        try:
            return [
                RankingManga.from_node((item or {}).get("node") or {})
                for item in payload.get("data") or []
            ]
        except (AttributeError, TypeError, ValueError) as exc:
            raise ExternalSourceError(f"invalid response body: {exc}") from exc

    def get_featured_manga(self) -> dict[str, Any]:
        """Fetch the featured ranking sections concurrently."""
        if not self._client_id:
            raise HandlerError(503, "MAL API not configured")

        with ThreadPoolExecutor(max_workers=len(FEATURED_SECTIONS)) as pool:
            futures = [
                pool.submit(self.fetch_ranking, key, FEATURED_LIMIT)
                for _, key in FEATURED_SECTIONS
            ]
            sections: list[dict[str, Any]] = []
            failures = 0
            for (label, _), future in zip(FEATURED_SECTIONS, futures):
                try:
                    mangas = future.result()
                except ExternalSourceError:
                    failures += 1
                    sections.append({"label": "", "mangas": None})
                    continue
                sections.append({"label": label, "mangas": [m.to_dict() for m in mangas]})

        if failures == len(FEATURED_SECTIONS):
            raise HandlerError(500, "Failed to fetch manga rankings")
        return {"sections": sections}

    def get_ranking(
        self, ranking_type: str = "all", limit: int | str | None = None
    ) -> dict[str, Any]:
        """Fetch one ranking list of up to 100 entries."""
        if not self._client_id:
            raise HandlerError(503, "MAL API not configured")
        real_limit = _clamp_limit(limit)
        try:
            mangas = self.fetch_ranking(ranking_type, real_limit)
        except ExternalSourceError as exc:
            raise HandlerError(500, str(exc)) from exc
        return {
            "mangas": [m.to_dict() for m in mangas],
            "count": len(mangas),
            "type": ranking_type,
        }