from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Union

from stocksync.domain.models import Product

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockChanged:
    product_id: int
    new_stock: int
    delta: int
    timestamp: str


@dataclass(frozen=True)
class ProductAdded:
    product: Product


@dataclass(frozen=True)
class ProductUpdated:
    product: Product


@dataclass(frozen=True)
class ProductRemoved:
    product_id: int


@dataclass(frozen=True)
class ProductsReplaced:
    count: int


StoreEvent = Union[StockChanged, ProductAdded, ProductUpdated, ProductRemoved, ProductsReplaced]
Handler = Callable[[StoreEvent], None]


class EventBus:
    """Synchronous publish/subscribe for store change notifications.

    Handlers run in subscription order. A failing handler is logged and does not
    prevent the remaining handlers from running, since the mutation that raised
    the event has already been persisted.
    """

    def __init__(self) -> None:
        self._handlers: list[Handler] = []

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: StoreEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                log.exception("store_event_handler_failed event=%s", type(event).__name__)
