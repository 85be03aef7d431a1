"""Fan-out of user events to subscribed UDP addresses."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from .udp_protocol import create_notification_message
from .udp_subscription import Address, SubscriberManager, _addr_key


class _DatagramSocket(Protocol):
    def sendto(self, data: bytes, address: Any) -> int: ...


@dataclass
class BroadcastEvent:
    event_type: str
    data: Any = None


class Broadcaster:
    """Sends notifications over a UDP socket to a user's subscribers."""

    def __init__(
        self,
        sock: _DatagramSocket,
        subscriber_manager: SubscriberManager,
        logger: logging.Logger | None = None,
    ) -> None:
        self._sock = sock
        self._subscribers = subscriber_manager
        self._log = logger or logging.getLogger(__name__)

    def broadcast_to_user(self, user_id: str, event: BroadcastEvent) -> int:
        """Send the event to each matching subscriber; return the number sent."""
        subscribers = self._subscribers.get_subscribers(user_id, event.event_type)
        if not subscribers:
            self._log.debug(
                "no_udp_subscribers user_id=%s event_type=%s", user_id, event.event_type
            )
            return 0

        payload = create_notification_message(user_id, event.event_type, event.data)
        sent = failed = 0
        for sub in subscribers:
            target: Address = sub.addr
            try:
                self._sock.sendto(payload, target)
            except OSError as exc:
                failed += 1
                self._log.warning(
                    "broadcast_failed user_id=%s addr=%s error=%s",
                    user_id, _addr_key(target), exc,
                )
            else:
                sent += 1

        self._log.info(
            "udp_broadcast_complete user_id=%s event_type=%s success_count=%d "
            "fail_count=%d total_devices=%d",
            user_id, event.event_type, sent, failed, len(subscribers),
        )
        return sent

    def broadcast_to_all(self, event: BroadcastEvent) -> None:
        self._log.info("broadcasting_to_all event_type=%s", event.event_type)