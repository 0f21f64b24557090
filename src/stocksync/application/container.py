from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from stocksync.config import AppPaths, SyncSettings
from stocksync.domain.errors import ValidationError
from stocksync.domain.events import EventBus
from stocksync.remote.pubsub import InMemoryHub, PubSubTransport
from stocksync.remote.row_store import RestRowStore, RowStore
from stocksync.repositories.ledger import TransactionLedger
from stocksync.repositories.local_storage import SqliteLocalStorage
from stocksync.repositories.pending_queue import PendingUpdateQueue
from stocksync.repositories.product_store import LocalProductStore
from stocksync.repositories.sales_history import SalesHistory
from stocksync.services.backup_service import BackupService
from stocksync.services.broadcast import BroadcastChannel, BroadcastPolicy
from stocksync.services.excel_service import ExcelService
from stocksync.services.inventory_service import InventoryService
from stocksync.services.operations_service import OperationsService
from stocksync.services.sales_service import SalesService
from stocksync.services.sync_engine import SyncEngine

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppContainer:
    settings: SyncSettings
    storage: SqliteLocalStorage
    events: EventBus
    store: LocalProductStore
    ledger: TransactionLedger
    queue: PendingUpdateQueue
    history: SalesHistory
    channel: BroadcastChannel
    engine: SyncEngine
    sales: SalesService
    inventory: InventoryService
    backup: BackupService
    excel: ExcelService
    operations: OperationsService


def build_container(settings: SyncSettings, paths: AppPaths, remote: Optional[RowStore] = None,
                    transport: Optional[PubSubTransport] = None, device: Optional[str] = None) -> AppContainer:
    """Wire one session. `remote` and `transport` are injectable; they default to the REST row store and an in-process hub."""
    if not settings.account_id:
        raise ValidationError("STOCKSYNC_ACCOUNT_ID is required.")
    if remote is None:
        if not settings.remote_configured:
            raise ValidationError("STOCKSYNC_REMOTE_URL and STOCKSYNC_REMOTE_KEY are required.")
        remote = RestRowStore(settings.remote_url, settings.remote_key, timeout=settings.remote_timeout)

    storage = SqliteLocalStorage(paths.db_path)
    storage.init_db()

    events = EventBus()
    store = LocalProductStore(storage, events=events)
    ledger = TransactionLedger(storage, capacity=settings.ledger_capacity)
    queue = PendingUpdateQueue(storage, max_attempts=settings.max_attempts)
    history = SalesHistory(storage)

    channel = BroadcastChannel(transport or InMemoryHub(), settings.account_id, device=device)
    engine = SyncEngine(store, ledger, queue, remote, settings.account_id, storage, channel=channel, sales=history)

    def _logout(event) -> None:
        log.warning("session_logout_requested device=%s", event.device)
        channel.disconnect()

    BroadcastPolicy(on_refresh=lambda event: engine.pull_and_reconcile(), on_logout=_logout).attach(channel)
    channel.connect()

    return AppContainer(
        settings=settings,
        storage=storage,
        events=events,
        store=store,
        ledger=ledger,
        queue=queue,
        history=history,
        channel=channel,
        engine=engine,
        sales=SalesService(store, engine, ledger, history),
        inventory=InventoryService(store, engine),
        backup=BackupService(store, history, engine, paths.backup_dir),
        excel=ExcelService(queue, store),
        operations=OperationsService(
            storage, engine, db_path=paths.db_path, logs_dir=paths.logs_dir, backup_dir=paths.backup_dir
        ),
    )
