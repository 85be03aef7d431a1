# mangahub

Building blocks for a manga reading-progress service: the message formats for a
TCP sync channel and a UDP notification channel, the in-memory bookkeeping
behind them, a MyAnimeList catalogue client, and handlers for a local manga
catalogue and per-user reading libraries stored in SQLite.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Modules

### UDP notifications

- `mangahub.udp_protocol`: `Message` with `to_bytes()`, `parse_message()`
  (raises `ValueError` on malformed JSON), and the builders
  `create_register_message`, `create_unregister_message`,
  `create_subscribe_message`, `create_heartbeat_message`,
  `create_notification_message`, `create_success_message` and
  `create_error_message`. Each carries an RFC 3339 `timestamp`.
- `mangahub.udp_subscription`: `SubscriberManager` keeps `Subscriber` entries
  per user, keyed by `(host, port)` address. `get_subscribers(user_id,
  event_type)` returns those whose event types include the type or `"all"`.
  `heartbeat()` and `update_subscription()` return `False` for unknown
  addresses. `cleanup_stale()` drops subscribers not seen for two minutes;
  `start_cleanup()` runs it every 30 seconds on a background thread until
  `stop()`.
- `mangahub.udp_broadcaster`: `Broadcaster(sock, subscriber_manager)` sends a
  `BroadcastEvent` as a notification datagram to every matching subscriber of a
  user through `sock.sendto` and returns how many sends succeeded.

### TCP sync channel

- `mangahub.tcp_protocol`: newline-terminated JSON frames. `parse_message()`
  raises `ValueError` when the input is malformed or has no `type`. Builders:
  `create_data_message`, `create_error_message`, `create_success_message`,
  `create_pong_message`, `create_heartbeat_message`,
  `create_connect_response_message`, `create_disconnect_response_message`,
  `create_status_response_message` and `create_update_event_message`, with
  payload dataclasses such as `StatusResponsePayload`, `LastSyncInfo` and
  `UpdateEventPayload`.
- `mangahub.tcp_clients`: `Client` and the thread-safe `ClientManager`
  (`add`, `remove`, `get`, `all`, `len()` and `in`).
- `mangahub.tcp_session`: `SessionManager` creates a `ClientSession` per
  connected device, counts messages, records the last sync, handles
  subscriptions (defaulting to `progress` and `library` events) and removes
  stale sessions. Session ids come from `generate_session_id()` in the form
  `sess_<name>_<type>_<DDMMYYYYTHHMMSS>_<4 hex digits>`, using `sanitize()`.
- `mangahub.tcp_heartbeat`: `HeartbeatManager` with `HeartbeatConfig`
  (interval 30 s, timeout 90 s by default) records heartbeats and round-trip
  times. `network_quality()` reports `Excellent` (< 50 ms), `Good` (< 100 ms),
  `Fair` (< 200 ms), `Poor` (< 500 ms), `Very Poor`, or `Unknown`.
  `run_connection_heartbeat()` sends heartbeat frames over a socket until a
  `threading.Event` is set or a write fails.

### Catalogue and library

- `mangahub.manga_external`: the `Manga` record and `MALSource`, which
  searches (`search`) and fetches (`get_manga_by_id`) manga from the
  MyAnimeList API with `httpx`. The client id is taken from the
  `MAL_CLIENT_ID` environment variable unless given; failures raise
  `ExternalSourceError`. `external_source_from_env()` raises when the variable
  is unset.
- `mangahub.manga_handler`: `MangaHandler` searches, lists and creates manga in
  a SQLite `manga` table, and proxies MyAnimeList search, detail and ranking
  requests (`get_featured_manga` fetches three ranking sections concurrently).
  Methods return JSON-ready dicts or raise `HandlerError`, whose `status_code`
  is the HTTP status to answer with.
- `mangahub.user_handler`: `UserHandler` reads a user's profile and manages the
  reading library (`add_to_library`, `get_library`, `update_progress`,
  `remove_from_library`), raising `UserError` on failure. An optional
  notifier receives `LibraryUpdateEvent` and `ProgressUpdateEvent` objects.

## Example

```python
import sqlite3

from mangahub.manga_handler import MangaHandler
from mangahub.udp_protocol import create_notification_message, parse_message
from mangahub.udp_subscription import SubscriberManager

manager = SubscriberManager()
manager.subscribe("user1", ("127.0.0.1", 5001), ["progress_update"])
print(len(manager.get_subscribers("user1", "progress_update")))  # 1

raw = create_notification_message("user1", "progress_update", {"manga_id": "1", "chapter_id": 42})
print(parse_message(raw).event_type)  # progress_update

db = sqlite3.connect(":memory:")
db.execute(
    "CREATE TABLE manga (id TEXT PRIMARY KEY, title TEXT, author TEXT, genres TEXT,"
    " status TEXT, total_chapters INTEGER, description TEXT, cover_url TEXT)"
)
handler = MangaHandler(db)
handler.create_manga({"id": "1", "title": "Example", "genres": ["Action"]})
print(handler.get_manga_by_id("1")["genres"])  # ['Action']
```

## What this package does not do

- It does not run servers. There is no TCP or UDP listener and no HTTP
  application or routing; the handlers return dicts and raise errors carrying
  a status code, to be wired into a server of your choice.
- It does not create the database. The handlers expect existing tables:
  `manga` (`id`, `title`, `author`, `genres` as a JSON list, `status`,
  `total_chapters`, `description`, `cover_url`), `users` (`id`, `username`,
  `email`, `created_at`) and `user_progress` (`user_id`, `manga_id`,
  `current_chapter`, `status`, `updated_at`, unique on `user_id, manga_id`).
- It does not authenticate users or verify tokens; callers pass an already
  established user id.
- It has no dedicated error types for the sync protocols beyond `ValueError`
  from the parsers.