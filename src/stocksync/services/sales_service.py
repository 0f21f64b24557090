from __future__ import annotations

import logging
import secrets
import time
from collections import Counter
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional, Union

from stocksync.domain.errors import InsufficientStockError, ValidationError
from stocksync.domain.models import CartLine, Product, SaleItem, SaleRecord, now_iso

log = logging.getLogger("stocksync.sales")

CENT = Decimal("0.01")
GRAMS_PER_KILO = Decimal(1000)


def new_transaction_id() -> str:
    return f"sale_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def item_transaction_id(transaction_id: str, product_id: int) -> str:
    return f"{transaction_id}_{product_id}"


def _money(value: Decimal) -> float:
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


def _as_line(raw: Union[CartLine, Mapping]) -> CartLine:
    if isinstance(raw, CartLine):
        return raw
    grams = raw.get("weight_grams")
    return CartLine(
        product_id=int(raw["product_id"]),
        qty=int(raw.get("qty", 1)),
        weight_grams=None if grams is None else int(grams),
    )


class SalesService:
    """Turns a checkout cart into stock decrements plus one immutable sale record.

    The whole cart is validated against local stock before anything is applied.
    Each product line is pushed under its own sub-transaction id, so retrying a
    sale with the same transaction id never decrements twice.
    """

    def __init__(self, store, engine, ledger, history):
        self.store = store
        self.engine = engine
        self.ledger = ledger
        self.history = history

    def _price_line(self, product: Product, line: CartLine) -> SaleItem:
        if product.is_weight:
            if line.weight_grams is None or line.weight_grams <= 0:
                raise ValidationError(f"Weight in grams is required for {product.name or product.id}.")
            per_kilo = Decimal(str(product.price_per_kilo or 0))
            unit_price = per_kilo * Decimal(line.weight_grams) / GRAMS_PER_KILO
            if unit_price <= 0:
                raise ValidationError("Unit price must be > 0.")
            return SaleItem(
                product_id=product.id,
                qty=1,
                unit_price=_money(unit_price),
                subtotal=_money(unit_price),
                weight_grams=int(line.weight_grams),
            )

        if line.qty <= 0:
            raise ValidationError("Qty must be >= 1.")
        unit_price = Decimal(str(product.price))
        if unit_price <= 0:
            raise ValidationError("Unit price must be > 0.")
        return SaleItem(
            product_id=product.id,
            qty=int(line.qty),
            unit_price=_money(unit_price),
            subtotal=_money(unit_price * line.qty),
        )

    def process_sale(self, cart: Iterable[Union[CartLine, Mapping]], payment_method: str = "cash",
                     transaction_id: Optional[str] = None) -> SaleRecord:
        tx = transaction_id or new_transaction_id()

        if self.ledger.is_processed(tx):
            existing = self.history.get(tx)
            if existing is not None:
                log.info("sale_duplicate tx=%s", tx)
                return existing

        lines = [_as_line(raw) for raw in cart]
        if not lines:
            raise ValidationError("Cart is empty.")

        items: list[SaleItem] = []
        # Validate items and aggregate by product to avoid overselling
        required: Counter[int] = Counter()
        for line in lines:
            product = self.store.get_product(line.product_id)
            item = self._price_line(product, line)
            items.append(item)
            if self.ledger.is_processed(item_transaction_id(tx, product.id)):
                continue
            required[product.id] += item.stock_units
            if required[product.id] > int(product.stock):
                raise InsufficientStockError(product.id, required[product.id], int(product.stock), product.name)

        for product_id, amount in required.items():
            self.engine.push_delta(product_id, -amount, item_transaction_id(tx, product_id), notify=False)

        total = sum((Decimal(str(it.subtotal)) for it in items), Decimal(0))
        sale = SaleRecord(
            id=tx,
            items=tuple(items),
            total=_money(total),
            payment_method=payment_method,
            timestamp=now_iso(),
        )
        self.history.append(sale)
        self.ledger.mark_processed(tx)
        self.engine.upload_sale(sale)
        self.engine.notify_stock_update({"sale_id": tx, "product_ids": sorted({it.product_id for it in items})})

        log.info("sale_created sale_id=%s items=%s total=%.2f payment=%s", tx, len(items), sale.total, payment_method)
        return sale

    def list_sales(self) -> list[SaleRecord]:
        return self.history.list()

    def get_sale(self, sale_id: str) -> Optional[SaleRecord]:
        return self.history.get(sale_id)
