"""Manga records and the MyAnimeList catalogue client."""

from __future__ import annotations

import abc
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping

import httpx

DEFAULT_BASE_URL = "https://api.myanimelist.net/v2"
MAX_LIMIT = 100
REQUEST_TIMEOUT = 10.0
USER_AGENT = "MangaHub/1.0"
CLIENT_ID_ENV = "MAL_CLIENT_ID"

SEARCH_FIELDS = (
    "id,title,main_picture,alternative_titles,synopsis,num_chapters,status,"
    "genres,authors{first_name,last_name}"
)
DETAIL_FIELDS = (
    "id,title,main_picture,alternative_titles,start_date,end_date,synopsis,mean,"
    "rank,popularity,num_list_users,num_scoring_users,media_type,status,genres,"
    "num_volumes,num_chapters,authors{first_name,last_name},background,"
    "serialization{name}"
)

_STORY_ROLES = ("Story", "Story & Art")
_CORE_FIELDS = frozenset(
    {
        "id",
        "title",
        "author",
        "genres",
        "status",
        "total_chapters",
        "description",
        "cover_url",
    }
)


@dataclass
class Manga:
    """A manga entry; the fields after ``cover_url`` come only from detail lookups."""

    id: str
    title: str = ""
    author: str = ""
    genres: list[str] = field(default_factory=list)
    status: str = ""
    total_chapters: int = 0
    description: str = ""
    cover_url: str = ""
    alternative_titles: dict[str, Any] = field(default_factory=dict)
    start_date: str = ""
    end_date: str = ""
    mean: float = 0.0
    rank: int = 0
    popularity: int = 0
    num_list_users: int = 0
    num_scoring_users: int = 0
    media_type: str = ""
    num_volumes: int = 0
    authors: list[dict[str, Any]] = field(default_factory=list)
    serialization: list[dict[str, Any]] = field(default_factory=list)
    background: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready dict; empty detail fields are left out."""
        return {
            key: value
            for key, value in asdict(self).items()
            if key in _CORE_FIELDS or value not in ("", 0, 0.0, [], {}, None)
        }


class ExternalSourceError(Exception):
    """A catalogue lookup failed; ``status_code`` is set for HTTP failures."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ExternalSource(abc.ABC):
    """A remote catalogue that can be searched and queried by id."""

    @abc.abstractmethod
    def search(self, query: str, limit: int = MAX_LIMIT, offset: int = 0) -> list[Manga]:
        """Return manga matching ``query``."""

    @abc.abstractmethod
    def get_manga_by_id(self, manga_id: str) -> Manga:
        """Return the full record for one manga."""


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _items(value: Any) -> list[Any]:
    return list(value) if isinstance(value, list) else []


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _int(value: Any) -> int:
    return int(value) if value is not None else 0


def _float(value: Any) -> float:
    return float(value) if value is not None else 0.0


def _cover_url(picture: Any) -> str:
    picture = _mapping(picture)
    return _text(picture.get("large")) or _text(picture.get("medium"))


def _genre_names(genres: Any) -> list[str]:
    return [_text(_mapping(g).get("name")) for g in _items(genres)]


def _full_name(author: Any) -> str:
    node = _mapping(_mapping(author).get("node"))
    return f"{_text(node.get('first_name'))} {_text(node.get('last_name'))}".strip()


def _main_author(authors: list[Any]) -> str:
    for author in authors:
        if _mapping(author).get("role") in _STORY_ROLES:
            name = _full_name(author)
            if name:
                return name
    return _full_name(authors[0]) if authors else ""


def _normalise_status(status: Any) -> str:
    lowered = _text(status).lower()
    return "completed" if lowered == "finished" else lowered


def convert_mal_search_node(node: Mapping[str, Any]) -> Manga:
    """Build a Manga from one node of a search response."""
    return Manga(
        id=str(_int(node.get("id"))),
        title=_text(node.get("title")),
        author=_main_author(_items(node.get("authors"))),
        genres=_genre_names(node.get("genres")),
        status=_normalise_status(node.get("status")),
        total_chapters=_int(node.get("num_chapters")),
        description=_text(node.get("synopsis")),
        cover_url=_cover_url(node.get("main_picture")),
    )


def convert_mal_detail(data: Mapping[str, Any]) -> Manga:
    """Build a full Manga from a detail response."""
    authors = _items(data.get("authors"))
    author_list = [
        {
            "node": {
                "first_name": _text(_mapping(_mapping(a).get("node")).get("first_name")),
                "last_name": _text(_mapping(_mapping(a).get("node")).get("last_name")),
            },
            "role": _text(_mapping(a).get("role")),
        }
        for a in authors
    ]

    alt_titles: dict[str, Any] = {}
    alt = data.get("alternative_titles")
    if isinstance(alt, Mapping):
        synonyms = alt.get("synonyms")
        alt_titles = {
            "en": _text(alt.get("en")),
            "ja": _text(alt.get("ja")),
            "synonyms": list(synonyms) if synonyms is not None else None,
        }

    serialization = [
        {"node": {"name": _text(_mapping(_mapping(s).get("node")).get("name"))}}
        for s in _items(data.get("serialization"))
    ]

    return Manga(
        id=str(_int(data.get("id"))),
        title=_text(data.get("title")),
        author=_main_author(authors),
        genres=_genre_names(data.get("genres")),
        status=_normalise_status(data.get("status")),
        total_chapters=_int(data.get("num_chapters")),
        description=_text(data.get("synopsis")),
        cover_url=_cover_url(data.get("main_picture")),
        alternative_titles=alt_titles,
        start_date=_text(data.get("start_date")),
        end_date=_text(data.get("end_date")),
        mean=_float(data.get("mean")),
        rank=_int(data.get("rank")),
        popularity=_int(data.get("popularity")),
        num_list_users=_int(data.get("num_list_users")),
        num_scoring_users=_int(data.get("num_scoring_users")),
        media_type=_text(data.get("media_type")),
        num_volumes=_int(data.get("num_volumes")),
        authors=author_list,
        serialization=serialization,
        background=_text(data.get("background")),
    )


class MALSource(ExternalSource):
    """Client for the MyAnimeList manga API."""

    def __init__(
        self,
        client_id: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.Client | None = None,
    ) -> None:
        if client_id is None:
            client_id = os.environ.get(CLIENT_ID_ENV, "")
        self.client_id = client_id.strip()
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=REQUEST_TIMEOUT)

    def __enter__(self) -> MALSource:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self.client.close()

    def _get(self, path: str, params: dict[str, str]) -> Mapping[str, Any]:
        if not self.client_id:
            raise ExternalSourceError(f"{CLIENT_ID_ENV} not set in environment")
        try:
            response = self.client.get(
                self.base_url + path,
                params=params,
                headers={"X-MAL-Client-ID": self.client_id, "User-Agent": USER_AGENT},
            )
        except httpx.HTTPError as exc:
            raise ExternalSourceError(str(exc)) from exc
        if response.status_code != httpx.codes.OK:
            raise ExternalSourceError(
                f"MAL API request failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalSourceError(f"invalid response body: {exc}") from exc
        if payload is None:
            return {}
        if not isinstance(payload, Mapping):
            raise ExternalSourceError("invalid response body: expected a JSON object")
        return payload

    def search(self, query: str, limit: int = MAX_LIMIT, offset: int = 0) -> list[Manga]:
        if limit <= 0 or limit > MAX_LIMIT:
            limit = MAX_LIMIT
        params: dict[str, str] = {}
        if query:
            params["q"] = query
        params["limit"] = str(limit)
        if offset > 0:
            params["offset"] = str(offset)
        params["fields"] = SEARCH_FIELDS
        payload = self._get("/manga", params)
        return [
            convert_mal_search_node(_mapping(_mapping(item).get("node")))
            for item in _items(payload.get("data"))
        ]

    def get_manga_by_id(self, manga_id: str) -> Manga:
        payload = self._get(f"/manga/{manga_id}", {"fields": DETAIL_FIELDS})
        return convert_mal_detail(payload)


def external_source_from_env() -> ExternalSource:
    """Return a MAL source configured from the environment."""
    if not os.environ.get(CLIENT_ID_ENV, "").strip():
        raise ExternalSourceError(f"{CLIENT_ID_ENV} is required in environment")
    return MALSource()