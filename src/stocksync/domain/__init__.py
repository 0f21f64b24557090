from .models import Product, CartLine, SaleItem, SaleRecord, PendingStockUpdate, DeadLetter
from .errors import (
    ValidationError,
    NotFoundError,
    InsufficientStockError,
    RemoteUnavailableError,
    RemoteRejectedError,
)

__all__ = [
    "Product",
    "CartLine",
    "SaleItem",
    "SaleRecord",
    "PendingStockUpdate",
    "DeadLetter",
    "ValidationError",
    "NotFoundError",
    "InsufficientStockError",
    "RemoteUnavailableError",
    "RemoteRejectedError",
]
