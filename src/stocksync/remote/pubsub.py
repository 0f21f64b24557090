from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from stocksync.domain.errors import RemoteUnavailableError

log = logging.getLogger(__name__)

STATUS_SUBSCRIBED = "SUBSCRIBED"
STATUS_CLOSED = "CLOSED"

MessageCallback = Callable[[str, dict], None]
StatusCallback = Callable[[str], None]


@dataclass(frozen=True)
class Subscription:
    id: int
    channel: str
    callback: MessageCallback
    on_status: Optional[StatusCallback] = None


class PubSubTransport(Protocol):
    def subscribe(self, channel: str, callback: MessageCallback,
                  on_status: Optional[StatusCallback] = None) -> Subscription: ...
    def publish(self, channel: str, event_type: str, payload: dict) -> None: ...
    def unsubscribe(self, subscription: Subscription) -> None: ...


class InMemoryHub:
    """In-process pub/sub transport.

    Delivers synchronously to every subscriber of a channel, the publisher
    included, in subscription order. While offline, publishing raises
    `RemoteUnavailableError` and new subscriptions wait for `go_online`.
    """

    def __init__(self, online: bool = True):
        self.online = online
        self._ids = itertools.count(1)
        self._subs: list[Subscription] = []
        self._awaiting_ack: list[Subscription] = []
        self.published: list[tuple[str, str, dict]] = []

    def subscribe(self, channel: str, callback: MessageCallback,
                  on_status: Optional[StatusCallback] = None) -> Subscription:
        sub = Subscription(next(self._ids), channel, callback, on_status)
        self._subs.append(sub)
        if self.online:
            self._ack(sub)
        else:
            self._awaiting_ack.append(sub)
        return sub

    def _ack(self, sub: Subscription) -> None:
        if sub.on_status is not None:
            sub.on_status(STATUS_SUBSCRIBED)

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subs = [s for s in self._subs if s.id != subscription.id]
        self._awaiting_ack = [s for s in self._awaiting_ack if s.id != subscription.id]

    def publish(self, channel: str, event_type: str, payload: dict) -> None:
        if not self.online:
            raise RemoteUnavailableError(f"channel {channel} is offline")
        self.published.append((channel, event_type, payload))
        for sub in [s for s in self._subs if s.channel == channel]:
            try:
                sub.callback(event_type, payload)
            except Exception:
                log.exception("pubsub_callback_failed channel=%s event=%s", channel, event_type)

    def go_offline(self) -> None:
        self.online = False
        for sub in list(self._subs):
            if sub.on_status is not None:
                sub.on_status(STATUS_CLOSED)

    def go_online(self) -> None:
        self.online = True
        waiting, self._awaiting_ack = self._awaiting_ack, []
        for sub in waiting:
            self._ack(sub)

    def subscribers(self, channel: str) -> int:
        return sum(1 for s in self._subs if s.channel == channel)

