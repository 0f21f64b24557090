from .sync_engine import SyncEngine, SyncStatus, PushResult
from .sales_service import SalesService
from .inventory_service import InventoryService
from .broadcast import BroadcastChannel, BroadcastPolicy, BroadcastEvent
from .scheduler import ManualScheduler, BlockingScheduler
from .backup_service import BackupService
from .excel_service import ExcelService
from .operations_service import OperationsService

__all__ = [
    "SyncEngine",
    "SyncStatus",
    "PushResult",
    "SalesService",
    "InventoryService",
    "BroadcastChannel",
    "BroadcastPolicy",
    "BroadcastEvent",
    "ManualScheduler",
    "BlockingScheduler",
    "BackupService",
    "ExcelService",
    "OperationsService",
]
