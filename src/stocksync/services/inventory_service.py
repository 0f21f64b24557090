from __future__ import annotations

from typing import Optional

from stocksync.domain.errors import ValidationError
from stocksync.domain.models import SALE_TYPE_UNIT, SALE_TYPE_WEIGHT, SALE_TYPES, Product
from stocksync.services.sync_engine import OP_CREATE, OP_UPDATE, PushResult


class InventoryService:
    def __init__(self, store, engine):
        self.store = store
        self.engine = engine

    def list_products(self) -> list[Product]:
        return self.store.get()

    def get_product(self, product_id: int) -> Product:
        return self.store.get_product(product_id)

    def low_stock(self, limit: int = 10) -> list[Product]:
        critical = [p for p in self.store.get() if p.is_low_stock]
        critical.sort(key=lambda p: (p.stock, p.name.lower()))
        return critical[:limit]

    def search_products(self, query: str) -> list[Product]:
        q = (query or "").strip().lower()
        if not q:
            return []
        return [p for p in self.store.get() if q in p.name.lower() or q in p.sku.lower()]

    @staticmethod
    def _validate(name: str, price: float, cost: float, min_stock: int, sale_type: str,
                  price_per_kilo: Optional[float]) -> None:
        if not name:
            raise ValidationError("Name is required.")
        if sale_type not in SALE_TYPES:
            raise ValidationError(f"Unknown sale type: {sale_type}")
        if sale_type == SALE_TYPE_WEIGHT:
            if price_per_kilo is None or price_per_kilo <= 0:
                raise ValidationError("Price per kilo must be > 0.")
        elif price <= 0:
            raise ValidationError("Price must be > 0.")
        if cost < 0:
            raise ValidationError("Cost must be >= 0.")
        if min_stock < 0:
            raise ValidationError("Stock values must be >= 0.")

    def add_product(self, name: str, price: float = 0.0, cost: float = 0.0, stock: int = 0, min_stock: int = 0,
                    sku: str = "", category: str = "", sale_type: str = SALE_TYPE_UNIT,
                    price_per_kilo: Optional[float] = None) -> Product:
        """Create a product locally and push its row. Weight products count stock in grams."""
        name = (name or "").strip()
        if stock < 0:
            raise ValidationError("Stock values must be >= 0.")
        self._validate(name, float(price), float(cost), int(min_stock), sale_type, price_per_kilo)

        product = self.store.add(
            {
                "name": name,
                "sku": (sku or "").strip(),
                "category": (category or "").strip(),
                "price": float(price),
                "cost": float(cost),
                "stock": int(stock),
                "min_stock": int(min_stock),
                "sale_type": sale_type,
                "price_per_kilo": price_per_kilo,
            }
        )
        self.engine.push_product(product, OP_CREATE)
        self.engine.notify_stock_update({"product_ids": [product.id]})
        return product

    def update_product(self, product_id: int, **patch) -> Product:
        if "stock" in patch:
            raise ValidationError("Stock changes must go through stock adjustments.")
        current = self.store.get_product(product_id)
        merged = {**current.to_dict(), **patch}
        self._validate(
            str(merged.get("name") or "").strip(),
            float(merged.get("price") or 0),
            float(merged.get("cost") or 0),
            int(merged.get("min_stock") or 0),
            str(merged.get("sale_type") or SALE_TYPE_UNIT),
            merged.get("price_per_kilo"),
        )
        updated = self.store.update(product_id, patch)
        self.engine.push_product(updated, OP_UPDATE)
        self.engine.notify_stock_update({"product_ids": [updated.id]})
        return updated

    def delete_product(self, product_id: int) -> None:
        self.store.remove(product_id)
        self.engine.delete_remote_product(product_id)
        self.engine.notify_stock_update({"product_ids": [int(product_id)]})

    def adjust_stock(self, product_id: int, delta: int, transaction_id: Optional[str] = None) -> PushResult:
        if int(delta) == 0:
            raise ValidationError("Stock adjustment must be non-zero.")
        return self.engine.push_delta(int(product_id), int(delta), transaction_id)
