"""Single ingestion boundary for product records.

Products arrive from on-device storage, from the remote `produtos` table and from
callers building new products. Each source spells attributes differently, so every
record passes through `normalize_product`, which resolves the accepted spellings
from one alias table and returns the canonical `Product`.
"""
from __future__ import annotations

import uuid
from typing import Any, Mapping, Optional

from stocksync.domain.errors import ValidationError
from stocksync.domain.models import SALE_TYPE_UNIT, SALE_TYPE_WEIGHT, Product, now_iso

# High 64 bits of every UUID minted from a local id.
_LOCAL_UUID_PREFIX = 0x5170C45E_0000_4000
_LOW_MASK = (1 << 64) - 1
_FOREIGN_ID_BITS = 53

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("local_id", "id"),
    "name": ("name", "nome"),
    "sku": ("sku", "codigo_barras", "codigo"),
    "category": ("category", "categoria"),
    "price": ("price", "preco_venda", "preco"),
    "cost": ("cost", "preco_custo"),
    "stock": ("stock", "quantidade", "estoque"),
    "min_stock": ("min_stock", "minStock", "quantidade_minima", "minEstoque"),
    "sale_type": ("sale_type", "saleType", "unidade_medida"),
    "price_per_kilo": ("price_per_kilo", "pricePerKilo"),
    "created_at": ("created_at", "createdAt", "criado_em"),
    "updated_at": ("updated_at", "updatedAt", "atualizado_em"),
}


def local_id_to_uuid(local_id: int) -> str:
    local_id = int(local_id)
    if local_id < 0 or local_id > _LOW_MASK:
        raise ValidationError(f"Local id out of range: {local_id}")
    return str(uuid.UUID(int=(_LOCAL_UUID_PREFIX << 64) | local_id))


def uuid_to_local_id(value: Any) -> int:
    """Inverse of `local_id_to_uuid`; foreign UUIDs map to a stable positive integer."""
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    try:
        parsed = uuid.UUID(text)
    except ValueError as e:
        raise ValidationError(f"Invalid product id: {value!r}") from e
    if parsed.int >> 64 == _LOCAL_UUID_PREFIX:
        return parsed.int & _LOW_MASK
    return parsed.int & ((1 << _FOREIGN_ID_BITS) - 1)


def _pick(raw: Mapping[str, Any], field_name: str) -> Any:
    for key in FIELD_ALIASES[field_name]:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _to_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    try:
        return float(str(value).replace(",", ".")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return default


def _to_count(value: Any) -> int:
    return max(0, int(_to_float(value)))


def _sale_type(value: Any) -> str:
    text = str(value or "").strip().lower()
    if text in (SALE_TYPE_WEIGHT, "kg", "peso"):
        return SALE_TYPE_WEIGHT
    return SALE_TYPE_UNIT


def normalize_product(raw: Mapping[str, Any], *, default_id: Optional[int] = None) -> Product:
    raw_id = _pick(raw, "id")
    if raw_id is None:
        if default_id is None:
            raise ValidationError("Product id is required.")
        product_id = int(default_id)
    else:
        product_id = uuid_to_local_id(raw_id)

    sale_type = _sale_type(_pick(raw, "sale_type"))
    price = _to_float(_pick(raw, "price"))
    price_per_kilo: Optional[float] = None
    if sale_type == SALE_TYPE_WEIGHT:
        # Remote rows keep the per-kilo price in the generic price column.
        price_per_kilo = _to_float(_pick(raw, "price_per_kilo"), default=price)
        price = price_per_kilo

    created = _pick(raw, "created_at") or now_iso()
    return Product(
        id=product_id,
        name=str(_pick(raw, "name") or "").strip(),
        sku=str(_pick(raw, "sku") or "").strip(),
        category=str(_pick(raw, "category") or "").strip(),
        price=max(0.0, price),
        cost=max(0.0, _to_float(_pick(raw, "cost"))),
        stock=_to_count(_pick(raw, "stock")),
        min_stock=_to_count(_pick(raw, "min_stock")),
        sale_type=sale_type,
        price_per_kilo=price_per_kilo,
        created_at=str(created),
        updated_at=str(_pick(raw, "updated_at") or created),
    )


def product_to_remote_row(product: Product, account_id: str, remote_id: Optional[str] = None) -> dict:
    """`remote_id` is the row key when the product came from a row this client did not mint."""
    return {
        "id": remote_id or local_id_to_uuid(product.id),
        "user_id": account_id,
        "nome": product.name,
        "categoria": product.category,
        "preco_custo": float(product.cost),
        "preco_venda": float(product.price_per_kilo if product.is_weight else product.price),
        "quantidade": int(product.stock),
        "quantidade_minima": int(product.min_stock),
        "unidade_medida": "kg" if product.is_weight else "un",
        "codigo_barras": product.sku,
        "ativo": True,
        "criado_em": product.created_at or now_iso(),
        "atualizado_em": product.updated_at or now_iso(),
    }
