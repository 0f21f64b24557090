from __future__ import annotations

import logging
from collections import deque
from typing import Callable

from stocksync.domain.errors import StorageError
from stocksync.domain.models import ProcessedTransaction, now_iso
from stocksync.repositories.local_storage import LEDGER_KEY

log = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


class TransactionLedger:
    """Append-only record of processed mutation ids, capped FIFO.

    Duplicate suppression is best-effort: storage failures are logged and
    swallowed, the in-memory view still answers `is_processed` for this session.
    """

    def __init__(self, storage, capacity: int = DEFAULT_CAPACITY, clock: Callable[[], str] = now_iso):
        self.storage = storage
        self.capacity = int(capacity)
        self.clock = clock
        self._records: deque[ProcessedTransaction] = deque(maxlen=self.capacity)
        self._ids: set[str] = set()
        self._load()

    def _load(self) -> None:
        try:
            raw = self.storage.get_json(LEDGER_KEY, default=[])
        except StorageError as e:
            log.warning("ledger_load_failed error=%s", e)
            raw = []
        for item in raw if isinstance(raw, list) else []:
            # older snapshots stored {"id": ..., "timestamp": ...}
            tx_id = item.get("transaction_id") or item.get("id") if isinstance(item, dict) else None
            if not tx_id or str(tx_id) in self._ids:
                continue
            self._append(ProcessedTransaction(str(tx_id), str(item.get("timestamp") or "")))

    def _append(self, record: ProcessedTransaction) -> None:
        if len(self._records) == self._records.maxlen:
            evicted = self._records[0]
            self._ids.discard(evicted.transaction_id)
        self._records.append(record)
        self._ids.add(record.transaction_id)

    def __len__(self) -> int:
        return len(self._records)

    def is_processed(self, transaction_id: str) -> bool:
        return str(transaction_id) in self._ids

    def mark_processed(self, transaction_id: str) -> None:
        tx_id = str(transaction_id)
        if tx_id in self._ids:
            return
        self._append(ProcessedTransaction(tx_id, self.clock()))
        try:
            self.storage.set_json(
                LEDGER_KEY,
                [{"transaction_id": r.transaction_id, "timestamp": r.timestamp} for r in self._records],
            )
        except StorageError as e:
            log.warning("ledger_write_failed tx=%s error=%s", tx_id, e)
