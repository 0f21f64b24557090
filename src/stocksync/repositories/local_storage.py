from __future__ import annotations

import json
import shutil
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from stocksync.domain.errors import StorageError

PRODUCTS_KEY = "products_app_data"
SALES_KEY = "sales_app_data"
PENDING_KEY = "pending_stock_updates"
LEDGER_KEY = "processed_transactions"
DEAD_LETTER_KEY = "emergency_failed_saves"
PENDING_SALES_KEY = "pending_sale_uploads"
DIRTY_PRODUCTS_KEY = "dirty_products"
REMOTE_IDS_KEY = "remote_product_ids"


class SqliteLocalStorage:
    """On-device key/value storage; every value is a JSON document.

    Each write commits before returning, so callers may treat a completed call
    as durable.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)

    def _conn(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        backup_path = self._create_pre_migration_backup()
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_kv),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Storage migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_kv(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

    # ---------- Key/value ----------
    def get_json(self, key: str, default: Any = None) -> Any:
        try:
            conn = self._conn()
            try:
                cur = conn.cursor()
                cur.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
                row = cur.fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Could not read '{key}': {e}") from e
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except ValueError as e:
            raise StorageError(f"Corrupt JSON stored under '{key}'") from e

    def set_json(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        try:
            conn = self._conn()
            try:
                conn.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, datetime('now'))
                    ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
                    """,
                    (key, payload),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Could not write '{key}': {e}") from e

    def remove(self, key: str) -> None:
        try:
            conn = self._conn()
            try:
                conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Could not remove '{key}': {e}") from e

    def integrity_check(self) -> str:
        try:
            conn = self._conn()
            try:
                cur = conn.cursor()
                cur.execute("PRAGMA integrity_check")
                row = cur.fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Integrity check failed: {e}") from e
        return str(row[0]) if row else "unknown"
