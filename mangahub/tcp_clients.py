"""Registry of connected TCP clients."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any


@dataclass
class Client:
    """A connected client; ``conn`` is a socket-like object with ``sendall``."""

    conn: Any
    id: str
    user_id: str = ""
    username: str = ""
    authenticated: bool = False


class ClientManager:
    """Thread-safe map of client id to client."""

    def __init__(self) -> None:
        self._clients: dict[str, Client] = {}
        self._lock = threading.Lock()

    def add(self, client: Client) -> None:
        with self._lock:
            self._clients[client.id] = client

    def remove(self, client_id: str) -> None:
        with self._lock:
            self._clients.pop(client_id, None)

    def get(self, client_id: str) -> Client | None:
        with self._lock:
            return self._clients.get(client_id)

    def all(self) -> list[Client]:
        with self._lock:
            return list(self._clients.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def __contains__(self, client_id: object) -> bool:
        with self._lock:
            return client_id in self._clients