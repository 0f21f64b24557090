from __future__ import annotations

import logging
from typing import Optional

from stocksync.domain.models import SaleRecord
from stocksync.repositories.local_storage import SALES_KEY

log = logging.getLogger(__name__)


class SalesHistory:
    """Append-only local history of completed sales."""

    def __init__(self, storage):
        self.storage = storage
        raw = storage.get_json(SALES_KEY, default=[]) or []
        self._sales: list[SaleRecord] = []
        for item in raw:
            try:
                self._sales.append(SaleRecord.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                log.warning("sale_history_entry_skipped error=%s", e)

    def __len__(self) -> int:
        return len(self._sales)

    def list(self) -> list[SaleRecord]:
        return list(self._sales)

    def get(self, sale_id: str) -> Optional[SaleRecord]:
        for sale in self._sales:
            if sale.id == sale_id:
                return sale
        return None

    def append(self, sale: SaleRecord) -> None:
        if self.get(sale.id) is not None:
            return
        snapshot = self._sales + [sale]
        self.storage.set_json(SALES_KEY, [s.to_dict() for s in snapshot])
        self._sales = snapshot
