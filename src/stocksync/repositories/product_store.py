from __future__ import annotations

import logging
import time
from dataclasses import fields, replace
from typing import Callable, Iterable, Mapping, Optional, Union

from stocksync.domain.errors import NotFoundError, ValidationError
from stocksync.domain.events import (
    EventBus,
    ProductAdded,
    ProductRemoved,
    ProductsReplaced,
    ProductUpdated,
    StockChanged,
)
from stocksync.domain.models import Product, now_iso
from stocksync.domain.normalize import normalize_product
from stocksync.repositories.local_storage import PRODUCTS_KEY

log = logging.getLogger(__name__)

_PRODUCT_FIELDS = {f.name for f in fields(Product)}


class LocalProductStore:
    """Session-owned view of the product catalog.

    Holds the canonical stock per product. Every mutation writes the full snapshot
    to on-device storage before the in-memory view changes, then publishes a
    typed event on `events`.
    """

    def __init__(self, storage, events: EventBus | None = None, clock: Callable[[], str] = now_iso):
        self.storage = storage
        self.events = events or EventBus()
        self.clock = clock
        self._products: dict[int, Product] = {}
        self.reload()

    def reload(self) -> list[Product]:
        raw = self.storage.get_json(PRODUCTS_KEY, default=[])
        if not isinstance(raw, list):
            log.warning("product_snapshot_not_a_list type=%s", type(raw).__name__)
            raw = []
        loaded: dict[int, Product] = {}
        for item in raw:
            try:
                p = normalize_product(item)
            except (ValidationError, TypeError, AttributeError) as e:
                log.warning("product_snapshot_entry_skipped error=%s", e)
                continue
            loaded[p.id] = p
        self._products = loaded
        return self.get()

    def _persist(self, snapshot: dict[int, Product]) -> None:
        self.storage.set_json(PRODUCTS_KEY, [p.to_dict() for p in snapshot.values()])
        self._products = snapshot

    def get(self) -> list[Product]:
        return list(self._products.values())

    def find(self, product_id: int) -> Optional[Product]:
        return self._products.get(int(product_id))

    def get_product(self, product_id: int) -> Product:
        p = self.find(product_id)
        if p is None:
            raise NotFoundError(f"Product {product_id} not found.")
        return p

    def apply_delta(self, product_id: int, delta: int) -> Product:
        current = self.get_product(product_id)
        new_stock = max(0, int(current.stock) + int(delta))
        updated = replace(current, stock=new_stock, updated_at=self.clock())

        snapshot = dict(self._products)
        snapshot[updated.id] = updated
        self._persist(snapshot)

        self.events.publish(StockChanged(updated.id, new_stock, int(delta), updated.updated_at))
        return updated

    def replace_all(self, products: Iterable[Union[Product, Mapping]]) -> list[Product]:
        snapshot: dict[int, Product] = {}
        for item in products:
            p = item if isinstance(item, Product) else normalize_product(item)
            snapshot[p.id] = p
        self._persist(snapshot)
        self.events.publish(ProductsReplaced(len(snapshot)))
        return self.get()

    def _next_id(self) -> int:
        candidate = int(time.time() * 1000)
        if self._products:
            candidate = max(candidate, max(self._products) + 1)
        return candidate

    def add(self, product_data: Mapping) -> Product:
        data = dict(product_data)
        requested_id = data.pop("id", None)
        if requested_id is not None and int(requested_id) in self._products:
            raise ValidationError(f"Product id {requested_id} already exists.")
        stamp = self.clock()
        data.setdefault("created_at", stamp)
        data["updated_at"] = stamp
        data["id"] = int(requested_id) if requested_id is not None else self._next_id()
        product = normalize_product(data)

        snapshot = dict(self._products)
        snapshot[product.id] = product
        self._persist(snapshot)

        self.events.publish(ProductAdded(product))
        return product

    def update(self, product_id: int, patch: Mapping) -> Product:
        current = self.get_product(product_id)
        unknown = set(patch) - _PRODUCT_FIELDS
        if unknown:
            raise ValidationError(f"Unknown product fields: {', '.join(sorted(unknown))}")

        data = current.to_dict()
        data.update(patch)
        data["id"] = current.id
        data["created_at"] = current.created_at
        data["updated_at"] = self.clock()
        updated = normalize_product(data)

        snapshot = dict(self._products)
        snapshot[updated.id] = updated
        self._persist(snapshot)

        self.events.publish(ProductUpdated(updated))
        return updated

    def remove(self, product_id: int) -> None:
        current = self.get_product(product_id)
        snapshot = dict(self._products)
        del snapshot[current.id]
        self._persist(snapshot)
        self.events.publish(ProductRemoved(current.id))
