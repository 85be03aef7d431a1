"""Tracking of UDP addresses subscribed to a user's events."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

Address = tuple[Any, ...]

CLEANUP_INTERVAL = 30.0
STALE_TIMEOUT = 120.0


def _addr_key(addr: Address) -> str:
    host, port = addr[0], addr[1]
    if ":" in str(host):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


@dataclass
class Subscriber:
    """One subscribed address; times are ``time.monotonic`` readings."""

    user_id: str
    addr: Address
    event_types: list[str]
    registered_at: float = field(default_factory=time.monotonic)
    last_seen: float = field(default_factory=time.monotonic)

    def matches(self, event_type: str) -> bool:
        return any(et == "all" or et == event_type for et in self.event_types)


class SubscriberManager:
    """Thread-safe registry of subscribers keyed by user and address."""

    def __init__(
        self,
        logger: logging.Logger | None = None,
        cleanup_interval: float = CLEANUP_INTERVAL,
        stale_timeout: float = STALE_TIMEOUT,
    ) -> None:
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._addr_to_user: dict[str, str] = {}
        self._lock = threading.Lock()
        self._log = logger or logging.getLogger(__name__)
        self._stop = threading.Event()
        self._cleanup_interval = cleanup_interval
        self._stale_timeout = stale_timeout

    def subscribe(self, user_id: str, addr: Address, event_types: list[str]) -> None:
        key = _addr_key(addr)
        now = time.monotonic()
        sub = Subscriber(user_id, addr, list(event_types), now, now)
        with self._lock:
            self._subscribers.setdefault(user_id, []).append(sub)
            self._addr_to_user[key] = user_id
        self._log.debug(
            "subscriber_registered user_id=%s addr=%s event_types=%s",
            user_id, key, event_types,
        )

    def unsubscribe(self, addr: Address) -> None:
        key = _addr_key(addr)
        with self._lock:
            user_id = self._addr_to_user.pop(key, None)
            if user_id is None:
                return
            remaining = [
                s for s in self._subscribers.get(user_id, []) if _addr_key(s.addr) != key
            ]
            if remaining:
                self._subscribers[user_id] = remaining
            else:
                self._subscribers.pop(user_id, None)
        self._log.debug("subscriber_unregistered user_id=%s addr=%s", user_id, key)

    def _find(self, key: str) -> Subscriber | None:
        user_id = self._addr_to_user.get(key)
        if user_id is None:
            return None
        return next(
            (s for s in self._subscribers.get(user_id, []) if _addr_key(s.addr) == key),
            None,
        )

    def update_subscription(self, addr: Address, event_types: list[str]) -> bool:
        key = _addr_key(addr)
        with self._lock:
            sub = self._find(key)
            if sub is None:
                return False
            sub.event_types = list(event_types)
            sub.last_seen = time.monotonic()
        self._log.debug(
            "subscription_updated user_id=%s addr=%s event_types=%s",
            sub.user_id, key, event_types,
        )
        return True

    def heartbeat(self, addr: Address) -> bool:
        with self._lock:
            sub = self._find(_addr_key(addr))
            if sub is None:
                return False
            sub.last_seen = time.monotonic()
            return True

    def get_subscribers(self, user_id: str, event_type: str) -> list[Subscriber]:
        with self._lock:
            return [s for s in self._subscribers.get(user_id, []) if s.matches(event_type)]

    def get_user_by_addr(self, addr: Address) -> tuple[str, bool]:
        with self._lock:
            user_id = self._addr_to_user.get(_addr_key(addr))
        return (user_id, True) if user_id is not None else ("", False)

    def subscriber_count(self) -> int:
        with self._lock:
            return sum(len(subs) for subs in self._subscribers.values())

    def start_cleanup(self) -> None:
        threading.Thread(target=self._cleanup_loop, daemon=True).start()

    def stop(self) -> None:
        self._stop.set()

    def _cleanup_loop(self) -> None:
        while not self._stop.wait(self._cleanup_interval):
            self.cleanup_stale()

    def cleanup_stale(self) -> None:
        """Drop subscribers not seen within the stale timeout."""
        now = time.monotonic()
        with self._lock:
            for user_id in list(self._subscribers):
                kept = []
                for sub in self._subscribers[user_id]:
                    inactive = now - sub.last_seen
                    if inactive <= self._stale_timeout:
                        kept.append(sub)
                        continue
                    self._addr_to_user.pop(_addr_key(sub.addr), None)
                    self._log.info(
                        "removed_stale_subscriber user_id=%s addr=%s inactive_duration=%.3fs",
                        sub.user_id, _addr_key(sub.addr), inactive,
                    )
                if kept:
                    self._subscribers[user_id] = kept
                else:
                    del self._subscribers[user_id]