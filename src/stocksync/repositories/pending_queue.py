from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from stocksync.domain.errors import RemoteRejectedError, RemoteUnavailableError
from stocksync.domain.models import DeadLetter, PendingStockUpdate, now_iso
from stocksync.repositories.local_storage import DEAD_LETTER_KEY, PENDING_KEY

log = logging.getLogger("stocksync.sync")

DEFAULT_MAX_ATTEMPTS = 3


@dataclass
class DrainResult:
    succeeded: list[PendingStockUpdate] = field(default_factory=list)
    failed: list[PendingStockUpdate] = field(default_factory=list)
    dead_lettered: list[DeadLetter] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.failed and not self.dead_lettered


class PendingUpdateQueue:
    """Durable queue of stock deltas that did not reach the remote store.

    Entries are retried by `drain` until they succeed or hit `max_attempts`
    failures, then move to the dead-letter bucket for manual recovery.
    """

    def __init__(self, storage, max_attempts: int = DEFAULT_MAX_ATTEMPTS, clock: Callable[[], str] = now_iso):
        self.storage = storage
        self.max_attempts = int(max_attempts)
        self.clock = clock
        raw = storage.get_json(PENDING_KEY, default=[]) or []
        self._entries = [PendingStockUpdate.from_dict(it) for it in raw]
        raw_dead = storage.get_json(DEAD_LETTER_KEY, default=[]) or []
        self._dead = [DeadLetter.from_dict(it) for it in raw_dead]

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> list[PendingStockUpdate]:
        return list(self._entries)

    def dead_letters(self) -> list[DeadLetter]:
        return list(self._dead)

    def pending_for(self, product_id: int, after: Optional[PendingStockUpdate] = None) -> int:
        """Sum of queued deltas for a product, optionally only those queued after `after`."""
        entries = self._entries
        if after is not None:
            idx = next((i for i, e in enumerate(entries) if e is after), None)
            entries = entries[idx + 1:] if idx is not None else entries
        return sum(e.quantity_delta for e in entries if e.product_id == int(product_id))

    def _save_entries(self) -> None:
        self.storage.set_json(PENDING_KEY, [e.to_dict() for e in self._entries])

    def _save_dead(self) -> None:
        self.storage.set_json(DEAD_LETTER_KEY, [d.to_dict() for d in self._dead])

    def enqueue(self, product_id: int, delta: int) -> PendingStockUpdate:
        entry = PendingStockUpdate(product_id=int(product_id), quantity_delta=int(delta), timestamp=self.clock())
        self._entries.append(entry)
        self._save_entries()
        log.info("pending_enqueued product=%s delta=%s queued=%s", entry.product_id, entry.quantity_delta, len(self._entries))
        return entry

    def _to_dead_letter(self, entry: PendingStockUpdate, error: str) -> DeadLetter:
        dead = DeadLetter(
            product_id=entry.product_id,
            delta=entry.quantity_delta,
            error=error,
            timestamp=self.clock(),
            attempts=entry.attempts,
        )
        self._dead.append(dead)
        log.error("pending_dead_lettered product=%s delta=%s attempts=%s error=%s",
                  entry.product_id, entry.quantity_delta, entry.attempts, error)
        return dead

    def dead_letter(self, product_id: int, delta: int, error: str) -> DeadLetter:
        """Record a delta the remote refused outright; it never enters the retry queue."""
        dead = self._to_dead_letter(PendingStockUpdate(int(product_id), int(delta), self.clock(), 1), error)
        self._save_dead()
        return dead

    def drain(self, apply_fn: Callable[[PendingStockUpdate], None]) -> DrainResult:
        result = DrainResult()
        if not self._entries:
            return result

        batch = list(self._entries)
        remaining: list[PendingStockUpdate] = []
        for entry in batch:
            if entry.attempts >= self.max_attempts:
                result.dead_lettered.append(self._to_dead_letter(entry, "max attempts reached"))
                continue
            try:
                apply_fn(entry)
            except RemoteRejectedError as e:
                entry.attempts += 1
                result.dead_lettered.append(self._to_dead_letter(entry, str(e)))
                continue
            except RemoteUnavailableError as e:
                entry.attempts += 1
                if entry.attempts >= self.max_attempts:
                    result.dead_lettered.append(self._to_dead_letter(entry, str(e)))
                else:
                    log.warning("pending_retry_failed product=%s attempts=%s error=%s",
                                entry.product_id, entry.attempts, e)
                    result.failed.append(entry)
                    remaining.append(entry)
                continue
            result.succeeded.append(entry)

        # entries enqueued while the batch was being applied stay queued
        batch_ids = {id(e) for e in batch}
        self._entries = remaining + [e for e in self._entries if id(e) not in batch_ids]
        self._save_entries()
        if result.dead_lettered:
            self._save_dead()
        log.info("pending_drained ok=%s failed=%s dead=%s",
                 len(result.succeeded), len(result.failed), len(result.dead_lettered))
        return result

    def requeue_dead_letters(self) -> int:
        """Manual recovery: move every dead letter back to the queue with a fresh attempt count."""
        if not self._dead:
            return 0
        count = len(self._dead)
        for dead in self._dead:
            self._entries.append(PendingStockUpdate(dead.product_id, dead.delta, self.clock(), 0))
        self._dead = []
        self._save_entries()
        self._save_dead()
        log.warning("dead_letters_requeued count=%s", count)
        return count

    def clear_dead_letters(self) -> int:
        count = len(self._dead)
        self._dead = []
        self._save_dead()
        return count
