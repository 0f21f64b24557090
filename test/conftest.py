import sys
from pathlib import Path
from types import SimpleNamespace

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


class FakeRowStore:
    """In-memory stand-in for the remote row store.

    `online = False` makes every call raise RemoteUnavailableError,
    `reject = True` makes every call raise RemoteRejectedError.
    Tables named in `offline_tables` are unreachable on their own.
    """

    def __init__(self):
        self.tables = {}
        self.online = True
        self.reject = False
        self.offline_tables = set()
        self.calls = []

    def _check(self, op, table):
        from stocksync.domain.errors import RemoteRejectedError, RemoteUnavailableError

        self.calls.append((op, table))
        if not self.online or table in self.offline_tables:
            raise RemoteUnavailableError(f"{op} {table}: connection refused")
        if self.reject:
            raise RemoteRejectedError(f"{op} {table}: HTTP 400 rejected")

    def rows(self, table):
        return list(self.tables.get(table, {}).values())

    def select(self, table, filters=None):
        self._check("select", table)
        out = []
        for row in self.rows(table):
            if all(str(row.get(k)) == str(v) for k, v in (filters or {}).items()):
                out.append(dict(row))
        return out

    def insert(self, table, row):
        self._check("insert", table)
        self.tables.setdefault(table, {})[row["id"]] = dict(row)
        return dict(row)

    def update(self, table, row_id, patch):
        from stocksync.domain.errors import RemoteRejectedError

        self._check("update", table)
        current = self.tables.get(table, {}).get(row_id)
        if current is None:
            raise RemoteRejectedError(f"PATCH {table}: row {row_id} not found")
        current.update(patch)
        return dict(current)

    def upsert(self, table, rows, conflict_key="id"):
        self._check("upsert", table)
        bucket = self.tables.setdefault(table, {})
        for row in rows:
            key = row[conflict_key]
            merged = dict(bucket.get(key, {}))
            merged.update(row)
            bucket[key] = merged

    def delete(self, table, row_id):
        self._check("delete", table)
        self.tables.get(table, {}).pop(row_id, None)


def build_session(db_path, remote, channel=None, max_attempts=3, ledger_capacity=1000):
    """Wire one device by hand, without the broadcast policy."""
    from stocksync.repositories.ledger import TransactionLedger
    from stocksync.repositories.local_storage import SqliteLocalStorage
    from stocksync.repositories.pending_queue import PendingUpdateQueue
    from stocksync.repositories.product_store import LocalProductStore
    from stocksync.repositories.sales_history import SalesHistory
    from stocksync.services.inventory_service import InventoryService
    from stocksync.services.sales_service import SalesService
    from stocksync.services.sync_engine import SyncEngine

    storage = SqliteLocalStorage(db_path)
    storage.init_db()
    store = LocalProductStore(storage)
    ledger = TransactionLedger(storage, capacity=ledger_capacity)
    queue = PendingUpdateQueue(storage, max_attempts=max_attempts)
    history = SalesHistory(storage)
    engine = SyncEngine(store, ledger, queue, remote, "acct-1", storage, channel=channel, sales=history)
    return SimpleNamespace(
        storage=storage,
        store=store,
        ledger=ledger,
        queue=queue,
        history=history,
        engine=engine,
        sales=SalesService(store, engine, ledger, history),
        inventory=InventoryService(store, engine),
    )


def seed_product(session, product_id=3, stock=10, **extra):
    data = {"id": product_id, "name": f"Product {product_id}", "price": 2.5, "stock": stock}
    data.update(extra)
    return session.store.add(data)


def remote_stock(remote, product_id):
    from stocksync.domain.normalize import local_id_to_uuid

    row = remote.tables["produtos"][local_id_to_uuid(product_id)]
    return row["quantidade"]
