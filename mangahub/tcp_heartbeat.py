"""Heartbeat tracking and round-trip measurement for TCP clients."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from .tcp_protocol import create_heartbeat_message

_log = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class HeartbeatConfig:
    """Cleanup interval and liveness timeout, both in seconds."""

    interval: float = 30.0
    timeout: float = 90.0


class HeartbeatManager:
    """Records client heartbeats and drops clients that go quiet."""

    def __init__(self, config: HeartbeatConfig | None = None, clock: Clock = _now) -> None:
        self.config = config or HeartbeatConfig()
        self._clock = clock
        self._last: dict[str, datetime] = {}
        self._rtt: dict[str, float] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._stop_lock = threading.Lock()
        self._stopped = False

    def start(self) -> None:
        _log.info(
            "heartbeat_manager_started interval=%ss timeout=%ss",
            self.config.interval, self.config.timeout,
        )
        threading.Thread(target=self._cleanup_loop, daemon=True).start()

    def stop(self) -> None:
        with self._stop_lock:
            if self._stopped:
                return
            _log.info("heartbeat_manager_stopping")
            self._stopped = True
            self._stop.set()

    def register_client(self, client_id: str) -> None:
        with self._lock:
            self._last[client_id] = self._clock()
        _log.debug("client_registered_for_heartbeat client_id=%s", client_id)

    def unregister_client(self, client_id: str) -> None:
        with self._lock:
            self._last.pop(client_id, None)
            self._rtt.pop(client_id, None)
        _log.debug("client_unregistered_from_heartbeat client_id=%s", client_id)

    def record_heartbeat(self, client_id: str, rtt: float) -> None:
        """Note a heartbeat with its round-trip time in seconds."""
        with self._lock:
            self._last[client_id] = self._clock()
            self._rtt[client_id] = rtt
        _log.debug("heartbeat_recorded client_id=%s rtt=%.6fs", client_id, rtt)

    def last_heartbeat(self, client_id: str) -> datetime | None:
        with self._lock:
            return self._last.get(client_id)

    def rtt(self, client_id: str) -> float | None:
        with self._lock:
            return self._rtt.get(client_id)

    def is_alive(self, client_id: str) -> bool:
        with self._lock:
            last = self._last.get(client_id)
        if last is None:
            return False
        return (self._clock() - last).total_seconds() < self.config.timeout

    def network_quality(self, client_id: str) -> str:
        rtt = self.rtt(client_id)
        if rtt is None:
            return "Unknown"
        if rtt < 0.05:
            return "Excellent"
        if rtt < 0.1:
            return "Good"
        if rtt < 0.2:
            return "Fair"
        if rtt < 0.5:
            return "Poor"
        return "Very Poor"

    def _cleanup_loop(self) -> None:
        while not self._stop.wait(self.config.interval):
            self.cleanup_stale_connections()

    def cleanup_stale_connections(self) -> list[str]:
        """Forget clients silent for longer than the timeout; return their ids."""
        now = self._clock()
        with self._lock:
            stale = [
                cid
                for cid, last in self._last.items()
                if (now - last).total_seconds() > self.config.timeout
            ]
            for cid in stale:
                del self._last[cid]
                self._rtt.pop(cid, None)
        for cid in stale:
            _log.warning(
                "heartbeat_timeout client_id=%s timeout=%ss", cid, self.config.timeout
            )
        if stale:
            _log.info("stale_connections_cleaned count=%d", len(stale))
        return stale


def run_connection_heartbeat(
    stop_event: threading.Event,
    conn: Any,
    client_id: str,
    interval: float,
    manager: HeartbeatManager,
) -> None:
    """Send a heartbeat every ``interval`` seconds until stopped or a write fails."""
    _log.debug("heartbeat_loop_started client_id=%s interval=%ss", client_id, interval)
    while not stop_event.wait(interval):
        sent_at = time.monotonic()
        try:
            conn.sendall(create_heartbeat_message())
        except OSError as exc:
            _log.warning("heartbeat_send_failed client_id=%s error=%s", client_id, exc)
            return
        manager.record_heartbeat(client_id, time.monotonic() - sent_at)
    _log.debug("heartbeat_loop_stopped client_id=%s", client_id)