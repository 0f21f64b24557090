from __future__ import annotations
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional

SALE_TYPE_UNIT = "unit"
SALE_TYPE_WEIGHT = "weight"
SALE_TYPES = (SALE_TYPE_UNIT, SALE_TYPE_WEIGHT)

LOW_STOCK_FALLBACK = 3


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    sku: str = ""
    category: str = ""
    price: float = 0.0
    cost: float = 0.0
    stock: int = 0
    min_stock: int = 0
    sale_type: str = SALE_TYPE_UNIT
    price_per_kilo: Optional[float] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_weight(self) -> bool:
        return self.sale_type == SALE_TYPE_WEIGHT

    @property
    def is_low_stock(self) -> bool:
        if self.min_stock > 0:
            return self.stock <= self.min_stock
        return self.stock <= LOW_STOCK_FALLBACK

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CartLine:
    """One checkout line. Weight products are sold by `weight_grams`, unit products by `qty`."""

    product_id: int
    qty: int = 1
    weight_grams: Optional[int] = None


@dataclass(frozen=True)
class SaleItem:
    product_id: int
    qty: int
    unit_price: float
    subtotal: float
    weight_grams: Optional[int] = None

    @property
    def stock_units(self) -> int:
        return int(self.weight_grams) if self.weight_grams is not None else int(self.qty)


@dataclass(frozen=True)
class SaleRecord:
    id: str
    items: tuple[SaleItem, ...]
    total: float
    payment_method: str
    timestamp: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["items"] = [asdict(it) for it in self.items]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "SaleRecord":
        items = tuple(
            SaleItem(
                product_id=int(it["product_id"]),
                qty=int(it["qty"]),
                unit_price=float(it["unit_price"]),
                subtotal=float(it["subtotal"]),
                weight_grams=None if it.get("weight_grams") is None else int(it["weight_grams"]),
            )
            for it in data.get("items", [])
        )
        return cls(
            id=str(data["id"]),
            items=items,
            total=float(data["total"]),
            payment_method=str(data.get("payment_method") or "cash"),
            timestamp=str(data["timestamp"]),
        )


@dataclass
class PendingStockUpdate:
    product_id: int
    quantity_delta: int
    timestamp: str = field(default_factory=now_iso)
    attempts: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PendingStockUpdate":
        return cls(
            product_id=int(data["product_id"]),
            quantity_delta=int(data["quantity_delta"]),
            timestamp=str(data.get("timestamp") or now_iso()),
            attempts=int(data.get("attempts") or 0),
        )


@dataclass(frozen=True)
class ProcessedTransaction:
    transaction_id: str
    timestamp: str


@dataclass(frozen=True)
class DeadLetter:
    product_id: int
    delta: int
    error: str
    timestamp: str
    attempts: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "DeadLetter":
        return cls(
            product_id=int(data["product_id"]),
            delta=int(data["delta"]),
            error=str(data.get("error") or ""),
            timestamp=str(data.get("timestamp") or ""),
            attempts=int(data.get("attempts") or 0),
        )
