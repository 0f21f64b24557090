from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from stocksync.domain.errors import RemoteError, RemoteRejectedError, RemoteUnavailableError, ValidationError
from stocksync.domain.models import PendingStockUpdate, Product, SaleRecord, now_iso
from stocksync.domain.normalize import local_id_to_uuid, normalize_product, product_to_remote_row
from stocksync.remote.row_store import PRODUCTS_TABLE, SALES_TABLE
from stocksync.repositories.local_storage import DIRTY_PRODUCTS_KEY, PENDING_SALES_KEY, REMOTE_IDS_KEY
from stocksync.repositories.pending_queue import DrainResult
from stocksync.services.broadcast import EVENT_STOCK_UPDATE

log = logging.getLogger("stocksync.sync")

# Outcome of a pushed mutation
REMOTE_CONFIRMED = "remote_confirmed"
QUEUED = "queued"
DEAD_LETTERED = "dead_lettered"
DUPLICATE = "duplicate"

# Dirty product operations
OP_CREATE = "create"
OP_UPDATE = "update"
OP_DELETE = "delete"

DEFAULT_DRAIN_INTERVAL = 180.0


@dataclass(frozen=True)
class PushResult:
    state: str
    product: Optional[Product]
    error: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        return self.state == REMOTE_CONFIRMED


@dataclass(frozen=True)
class SyncStatus:
    state: str
    last_sync: Optional[str]
    pending: int
    dead_letters: int
    dirty_products: int
    pending_sales: int
    last_error: Optional[str]


class SyncEngine:
    """Moves local stock mutations to the remote store and pulls remote state back.

    Local state leads: a mutation is applied to the product store first, then
    written remotely. Remote failures are queued and never rolled back locally;
    they are not raised to the caller either. Logical errors (unknown product)
    are raised.
    """

    def __init__(self, store, ledger, queue, remote, account_id: str, storage,
                 channel=None, sales=None):
        self.store = store
        self.ledger = ledger
        self.queue = queue
        self.remote = remote
        self.account_id = str(account_id)
        self.storage = storage
        self.channel = channel
        self.sales = sales
        self.last_sync: Optional[str] = None
        self.last_error: Optional[str] = None
        self._offline = False
        self._draining = False
        self._dirty: dict[int, str] = {
            int(k): str(v) for k, v in (storage.get_json(DIRTY_PRODUCTS_KEY, default={}) or {}).items()
        }
        self._pending_sales: list[str] = list(storage.get_json(PENDING_SALES_KEY, default=[]) or [])
        # products pulled from rows this client did not mint keep the row's own id
        self._remote_ids: dict[int, str] = {
            int(k): str(v) for k, v in (storage.get_json(REMOTE_IDS_KEY, default={}) or {}).items()
        }

    def _remote_id(self, product_id: int) -> str:
        return self._remote_ids.get(int(product_id)) or local_id_to_uuid(product_id)

    def _save_remote_ids(self) -> None:
        self.storage.set_json(REMOTE_IDS_KEY, {str(k): v for k, v in self._remote_ids.items()})

    # ---------- Stock deltas ----------
    def push_delta(self, product_id: int, delta: int, transaction_id: Optional[str] = None,
                   notify: bool = True) -> PushResult:
        if transaction_id and self.ledger.is_processed(transaction_id):
            log.info("push_duplicate tx=%s product=%s", transaction_id, product_id)
            return PushResult(DUPLICATE, self.store.find(product_id))

        product = self.store.apply_delta(product_id, delta)
        if transaction_id:
            self.ledger.mark_processed(transaction_id)

        try:
            self._apply_remote_delta(product.id, int(delta), unconfirmed=self.queue.pending_for(product.id))
        except RemoteUnavailableError as e:
            self._remote_failed(e)
            self.queue.enqueue(product.id, int(delta))
            return PushResult(QUEUED, product, str(e))
        except RemoteRejectedError as e:
            self._remote_failed(e)
            self.queue.dead_letter(product.id, int(delta), str(e))
            return PushResult(DEAD_LETTERED, product, str(e))

        self._remote_ok()
        log.info("push_confirmed product=%s delta=%s stock=%s tx=%s", product.id, delta, product.stock, transaction_id)
        if notify:
            self.notify_stock_update({"product_ids": [product.id]})
        return PushResult(REMOTE_CONFIRMED, product)

    def _apply_remote_delta(self, product_id: int, delta: int, unconfirmed: int = 0) -> None:
        remote_id = self._remote_id(product_id)
        rows = self.remote.select(PRODUCTS_TABLE, {"id": remote_id})
        if rows:
            current = normalize_product(rows[0]).stock
            self.remote.update(
                PRODUCTS_TABLE,
                remote_id,
                {"quantidade": max(0, current + int(delta)), "atualizado_em": now_iso()},
            )
            return

        product = self.store.find(product_id)
        if product is None:
            raise RemoteRejectedError(f"Product {product_id} exists neither locally nor remotely")
        # The local stock already includes deltas that are still queued behind this one.
        row = product_to_remote_row(product, self.account_id, self._remote_ids.get(product.id))
        row["quantidade"] = max(0, product.stock - int(unconfirmed))
        self.remote.upsert(PRODUCTS_TABLE, [row], "id")

    def _drain_entry(self, entry: PendingStockUpdate) -> None:
        self._apply_remote_delta(
            entry.product_id,
            entry.quantity_delta,
            unconfirmed=self.queue.pending_for(entry.product_id, after=entry),
        )

    # ---------- Pull ----------
    def pull_and_reconcile(self, account_id: Optional[str] = None) -> list[Product]:
        """Replace local products with the remote snapshot.

        Deltas still waiting in the pending queue are re-applied on top of the
        snapshot, and products created locally that never reached the remote are
        kept, so a reconcile never discards an unconfirmed local change.
        """
        acct = str(account_id or self.account_id)
        try:
            rows = self.remote.select(PRODUCTS_TABLE, {"user_id": acct})
        except RemoteError as e:
            self._remote_failed(e)
            log.warning("pull_failed account=%s error=%s", acct, e)
            return self.store.get()

        if not rows:
            log.info("pull_empty account=%s local_kept=%s", acct, len(self.store.get()))
            self._remote_ok()
            return self.store.get()

        snapshot: dict[int, Product] = {}
        remote_ids: dict[int, str] = {}
        for row in rows:
            try:
                p = normalize_product(row)
            except ValidationError as e:
                log.warning("pull_row_skipped error=%s", e)
                continue
            snapshot[p.id] = p
            row_id = str(row.get("id") or "")
            if row_id and row_id.lower() != local_id_to_uuid(p.id):
                remote_ids[p.id] = row_id

        for entry in self.queue.entries():
            p = snapshot.get(entry.product_id)
            if p is not None:
                snapshot[p.id] = _with_stock(p, p.stock + entry.quantity_delta)

        for pid, op in self._dirty.items():
            local = self.store.find(pid)
            if op == OP_CREATE and local is not None and pid not in snapshot:
                snapshot[pid] = local
            elif op == OP_UPDATE and local is not None and pid in snapshot:
                # unpushed field edits win, stock comes from the snapshot
                snapshot[pid] = _with_stock(local, snapshot[pid].stock)
            elif op == OP_DELETE:
                snapshot.pop(pid, None)

        self.store.replace_all(snapshot.values())
        # kept products and pending row pushes still address their original row
        for pid, row_id in self._remote_ids.items():
            if pid in snapshot or pid in self._dirty:
                remote_ids.setdefault(pid, row_id)
        if remote_ids != self._remote_ids:
            self._remote_ids = remote_ids
            self._save_remote_ids()
        self._remote_ok()
        log.info("pull_reconciled account=%s products=%s pending=%s", acct, len(snapshot), len(self.queue))
        return self.store.get()

    # ---------- Drain ----------
    def scheduled_drain(self) -> DrainResult:
        if self._draining:
            return DrainResult()
        self._draining = True
        try:
            result = self.queue.drain(self._drain_entry)
            flushed, rows_error = self._flush_dirty_products()
            uploaded, sales_error = self._flush_sale_uploads()
        finally:
            self._draining = False

        error = rows_error or sales_error
        if result.failed:
            self._offline = True
            self.last_error = "remote unavailable"
        elif error is not None:
            self._remote_failed(error)
        elif result.succeeded or flushed or uploaded:
            self._remote_ok()
        if result.succeeded or flushed:
            self.notify_stock_update({"product_ids": sorted({e.product_id for e in result.succeeded} | set(flushed))})
        return result

    def _drain_on_unload(self) -> None:
        if len(self.queue) or self._dirty or self._pending_sales:
            log.info("unload_drain pending=%s", len(self.queue))
            self.scheduled_drain()

    def start(self, scheduler, interval: float = DEFAULT_DRAIN_INTERVAL) -> None:
        scheduler.every(interval, self.scheduled_drain)
        scheduler.on_became_visible(self.scheduled_drain)
        scheduler.on_unload(self._drain_on_unload)

    # ---------- Product rows ----------
    def _save_dirty(self) -> None:
        self.storage.set_json(DIRTY_PRODUCTS_KEY, {str(k): v for k, v in self._dirty.items()})

    def _mark_dirty(self, product_id: int, op: str) -> None:
        previous = self._dirty.get(product_id)
        if previous == OP_CREATE and op == OP_UPDATE:
            op = OP_CREATE
        if previous == OP_CREATE and op == OP_DELETE:
            self._dirty.pop(product_id, None)
        else:
            self._dirty[product_id] = op
        self._save_dirty()

    def _push_row(self, product_id: int, op: str) -> None:
        if op == OP_DELETE:
            self.remote.delete(PRODUCTS_TABLE, self._remote_id(product_id))
            if self._remote_ids.pop(int(product_id), None) is not None:
                self._save_remote_ids()
            return
        product = self.store.find(product_id)
        if product is None:
            raise RemoteRejectedError(f"Product {product_id} no longer exists locally")
        row = product_to_remote_row(product, self.account_id, self._remote_ids.get(product.id))
        if op == OP_UPDATE:
            # field edits must not overwrite stock moved by other devices
            row.pop("quantidade", None)
        self.remote.upsert(PRODUCTS_TABLE, [row], "id")

    def push_product(self, product: Product, op: str = OP_UPDATE) -> bool:
        try:
            self._push_row(product.id, op)
        except RemoteError as e:
            self._remote_failed(e)
            self._mark_dirty(product.id, op)
            log.warning("product_push_failed product=%s op=%s error=%s", product.id, op, e)
            return False
        self._remote_ok()
        return True

    def delete_remote_product(self, product_id: int) -> bool:
        try:
            self._push_row(int(product_id), OP_DELETE)
        except RemoteError as e:
            self._remote_failed(e)
            self._mark_dirty(int(product_id), OP_DELETE)
            log.warning("product_delete_failed product=%s error=%s", product_id, e)
            return False
        self._remote_ok()
        return True

    def push_all(self) -> bool:
        products = self.store.get()
        rows = [product_to_remote_row(p, self.account_id, self._remote_ids.get(p.id)) for p in products]
        try:
            self.remote.upsert(PRODUCTS_TABLE, rows, "id")
        except RemoteError as e:
            self._remote_failed(e)
            for p in products:
                self._mark_dirty(p.id, OP_CREATE)
            log.warning("push_all_failed products=%s error=%s", len(rows), e)
            return False
        self._dirty = {pid: op for pid, op in self._dirty.items() if op == OP_DELETE}
        self._save_dirty()
        self._remote_ok()
        log.info("push_all_done products=%s", len(rows))
        return True

    def _flush_dirty_products(self) -> tuple[list[int], Optional[RemoteError]]:
        flushed: list[int] = []
        error: Optional[RemoteError] = None
        for pid, op in list(self._dirty.items()):
            try:
                self._push_row(pid, op)
            except RemoteUnavailableError as e:
                self._remote_failed(e)
                error = e
                break
            except RemoteRejectedError as e:
                log.error("product_push_rejected product=%s op=%s error=%s", pid, op, e)
            else:
                flushed.append(pid)
            self._dirty.pop(pid, None)
        self._save_dirty()
        return flushed, error

    # ---------- Sales ----------
    def _sale_row(self, sale: SaleRecord) -> dict:
        return {
            "codigo": sale.id,
            "user_id": self.account_id,
            "itens": [
                {
                    "product_id": self._remote_id(it.product_id),
                    "qty": it.qty,
                    "weight_grams": it.weight_grams,
                    "unit_price": it.unit_price,
                    "subtotal": it.subtotal,
                }
                for it in sale.items
            ],
            "total": sale.total,
            "forma_pagamento": sale.payment_method,
            "status": "concluida",
            "criado_em": sale.timestamp,
        }

    def upload_sale(self, sale: SaleRecord) -> bool:
        try:
            # keyed on the sale id, so a retried upload cannot create a second row
            self.remote.upsert(SALES_TABLE, [self._sale_row(sale)], "codigo")
        except RemoteError as e:
            self._remote_failed(e)
            if sale.id not in self._pending_sales:
                self._pending_sales.append(sale.id)
                self.storage.set_json(PENDING_SALES_KEY, self._pending_sales)
            log.warning("sale_upload_failed sale=%s error=%s", sale.id, e)
            return False
        return True

    def _flush_sale_uploads(self) -> tuple[int, Optional[RemoteError]]:
        if not self._pending_sales or self.sales is None:
            return 0, None
        uploaded = 0
        error: Optional[RemoteError] = None
        remaining = list(self._pending_sales)
        while remaining:
            sale_id = remaining[0]
            sale = self.sales.get(sale_id)
            if sale is None:
                log.error("sale_upload_missing sale=%s", sale_id)
            else:
                try:
                    self.remote.upsert(SALES_TABLE, [self._sale_row(sale)], "codigo")
                except RemoteUnavailableError as e:
                    self._remote_failed(e)
                    error = e
                    log.warning("sale_upload_deferred sale=%s pending=%s error=%s", sale_id, len(remaining), e)
                    break
                except RemoteRejectedError as e:
                    log.error("sale_upload_rejected sale=%s error=%s", sale_id, e)
                else:
                    uploaded += 1
            remaining.pop(0)
        self._pending_sales = remaining
        self.storage.set_json(PENDING_SALES_KEY, self._pending_sales)
        return uploaded, error

    # ---------- Status ----------
    def notify_stock_update(self, data: Mapping) -> None:
        if self.channel is not None:
            self.channel.publish(EVENT_STOCK_UPDATE, dict(data))

    def _remote_ok(self) -> None:
        self._offline = False
        self.last_error = None
        self.last_sync = now_iso()

    def _remote_failed(self, error: Exception) -> None:
        self._offline = isinstance(error, RemoteUnavailableError)
        self.last_error = str(error)

    def status(self) -> SyncStatus:
        pending = len(self.queue)
        if self._offline:
            state = "offline"
        elif self.last_error:
            state = "error"
        elif pending or self._dirty or self._pending_sales:
            state = "pending"
        else:
            state = "synced"
        return SyncStatus(
            state=state,
            last_sync=self.last_sync,
            pending=pending,
            dead_letters=len(self.queue.dead_letters()),
            dirty_products=len(self._dirty),
            pending_sales=len(self._pending_sales),
            last_error=self.last_error,
        )


def _with_stock(product: Product, stock: int) -> Product:
    return replace(product, stock=max(0, int(stock)))
