class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class InsufficientStockError(AppError):
    def __init__(self, product_id: int, requested: int, available: int, name: str | None = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        label = name or f"product {product_id}"
        super().__init__(
            f"Not enough stock for {label}. Available: {available}, requested: {requested}"
        )

    @property
    def shortfall(self) -> int:
        return self.requested - self.available


class StorageError(AppError):
    pass


class RemoteError(AppError):
    pass


class RemoteUnavailableError(RemoteError):
    """Network failure, timeout or 5xx. Retried from the pending queue."""


class RemoteRejectedError(RemoteError):
    """Definitive application-level refusal from the remote store."""
