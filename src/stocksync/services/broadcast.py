from __future__ import annotations

import logging
import platform
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

from stocksync.domain.errors import RemoteUnavailableError
from stocksync.domain.models import now_iso
from stocksync.remote.pubsub import STATUS_SUBSCRIBED, PubSubTransport, Subscription

log = logging.getLogger("stocksync.broadcast")

CONNECTING = "connecting"
SUBSCRIBED = "subscribed"
DISCONNECTED = "disconnected"

EVENT_PROFILE_UPDATE = "profile_update"
EVENT_STOCK_UPDATE = "stock_update"
EVENT_LOGOUT = "logout"
EVENT_CONNECTION = "connection"


@dataclass(frozen=True)
class BroadcastEvent:
    type: str
    data: dict = field(default_factory=dict)
    account_id: str = ""
    device: str = ""
    timestamp: str = ""


EventHandler = Callable[[BroadcastEvent], None]


def _default_device() -> str:
    return f"{platform.node() or 'device'} ({platform.system()})"[:50]


class BroadcastChannel:
    """Per-account pub/sub channel shared by every session of the same account.

    Self-delivery is on: the sender receives its own events too. Events published
    before the subscription is acknowledged are buffered and flushed in order.
    """

    def __init__(self, transport: PubSubTransport, account_id: str, device: Optional[str] = None):
        self.transport = transport
        self.account_id = str(account_id)
        self.device = device or _default_device()
        self.state = DISCONNECTED
        self._subscription: Optional[Subscription] = None
        self._handlers: list[EventHandler] = []
        self._outbox: deque[tuple[str, dict]] = deque()
        self._flushing = False

    @property
    def name(self) -> str:
        return f"user-{self.account_id}"

    @property
    def buffered(self) -> int:
        return len(self._outbox)

    def connect(self) -> None:
        if self.state in (CONNECTING, SUBSCRIBED):
            return
        if self._subscription is not None:
            self.transport.unsubscribe(self._subscription)
        self.state = CONNECTING
        log.info("broadcast_connecting channel=%s", self.name)
        self._subscription = self.transport.subscribe(self.name, self._on_message, self._on_status)

    def disconnect(self) -> None:
        if self._subscription is not None:
            self.transport.unsubscribe(self._subscription)
            self._subscription = None
        self.state = DISCONNECTED
        log.info("broadcast_disconnected channel=%s", self.name)

    def on_event(self, handler: EventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event_type: str, data: Optional[dict] = None) -> None:
        envelope = {
            "type": event_type,
            "data": dict(data or {}),
            "userId": self.account_id,
            "device": self.device,
            "timestamp": now_iso(),
        }
        self._outbox.append((event_type, envelope))
        if self.state != SUBSCRIBED:
            log.info("broadcast_buffered event=%s state=%s buffered=%s", event_type, self.state, len(self._outbox))
            if self.state == DISCONNECTED:
                self.connect()
            return
        self._flush()

    def _flush(self) -> None:
        # handlers may publish while an event is being delivered; those only enqueue
        if self._flushing:
            return
        self._flushing = True
        try:
            while self._outbox and self.state == SUBSCRIBED:
                event_type, envelope = self._outbox.popleft()
                try:
                    self.transport.publish(self.name, event_type, envelope)
                except RemoteUnavailableError as e:
                    log.warning("broadcast_publish_failed event=%s error=%s", event_type, e)
                    self._outbox.appendleft((event_type, envelope))
                    self.state = DISCONNECTED
                    return
        finally:
            self._flushing = False

    def _on_status(self, status: str) -> None:
        if status == STATUS_SUBSCRIBED:
            self.state = SUBSCRIBED
            log.info("broadcast_subscribed channel=%s", self.name)
            self._outbox.appendleft(
                (EVENT_CONNECTION, {
                    "type": EVENT_CONNECTION,
                    "data": {"message": "device connected"},
                    "userId": self.account_id,
                    "device": self.device,
                    "timestamp": now_iso(),
                })
            )
            self._flush()
        else:
            self.state = DISCONNECTED
            log.warning("broadcast_status channel=%s status=%s", self.name, status)

    def _on_message(self, event_type: str, payload: dict) -> None:
        event = BroadcastEvent(
            type=str(payload.get("type") or event_type),
            data=dict(payload.get("data") or {}),
            account_id=str(payload.get("userId") or ""),
            device=str(payload.get("device") or ""),
            timestamp=str(payload.get("timestamp") or ""),
        )
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                log.exception("broadcast_handler_failed event=%s", event.type)


class BroadcastPolicy:
    """Maps inbound event types to session reactions.

    The channel never touches product state itself: stock and profile events only
    ask for a reconcile, logout asks for session teardown.
    """

    def __init__(self, on_refresh: Callable[[BroadcastEvent], None],
                 on_logout: Optional[Callable[[BroadcastEvent], None]] = None):
        self.on_refresh = on_refresh
        self.on_logout = on_logout

    def __call__(self, event: BroadcastEvent) -> None:
        if event.type in (EVENT_STOCK_UPDATE, EVENT_PROFILE_UPDATE):
            log.info("broadcast_refresh event=%s from=%s", event.type, event.device)
            self.on_refresh(event)
        elif event.type == EVENT_LOGOUT:
            log.warning("broadcast_logout from=%s", event.device)
            if self.on_logout is not None:
                self.on_logout(event)
        elif event.type == EVENT_CONNECTION:
            log.info("broadcast_device_connected device=%s", event.device)
        else:
            log.info("broadcast_event_ignored type=%s", event.type)

    def attach(self, channel: BroadcastChannel) -> Callable[[], None]:
        return channel.on_event(self)
