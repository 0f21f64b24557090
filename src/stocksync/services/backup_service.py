from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

from stocksync.domain.errors import ValidationError
from stocksync.domain.models import SaleRecord, now_iso
from stocksync.domain.normalize import normalize_product

log = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = 1


class BackupService:
    """JSON export and import of the local catalog and sales history."""

    def __init__(self, store, history, engine, backup_dir: Path | str):
        self.store = store
        self.history = history
        self.engine = engine
        self.backup_dir = Path(backup_dir)

    def export_data(self, target: Path | str | None = None) -> Path:
        if target is None:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            ts = datetime.now().strftime("%Y%m%d_%H%M%S")
            target = self.backup_dir / f"stocksync_export_{ts}.json"
        path = Path(target)
        payload = {
            "version": EXPORT_FORMAT_VERSION,
            "exported_at": now_iso(),
            "products": [p.to_dict() for p in self.store.get()],
            "sales": [s.to_dict() for s in self.history.list()],
        }
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        if path.parent == self.backup_dir:
            self._enforce_retention(max_backups=30)
        log.info("data_exported path=%s products=%s sales=%s", path, len(payload["products"]), len(payload["sales"]))
        return path

    def import_data(self, source: Path | str) -> tuple[int, int]:
        """Replace the local catalog with an export and push it; merge its sales into history."""
        try:
            payload = json.loads(Path(source).read_text(encoding="utf-8"))
        except ValueError as e:
            raise ValidationError(f"Invalid export file: {e}") from e
        if not isinstance(payload, dict) or not isinstance(payload.get("products"), list):
            raise ValidationError("Export file must contain a 'products' list.")

        products = [normalize_product(p) for p in payload["products"]]
        sales = [SaleRecord.from_dict(s) for s in payload.get("sales") or []]

        self.store.replace_all(products)
        added = 0
        for sale in sales:
            if self.history.get(sale.id) is None:
                self.history.append(sale)
                added += 1
        self.engine.push_all()
        log.warning("data_imported source=%s products=%s sales_added=%s", source, len(products), added)
        return len(products), added

    def _enforce_retention(self, max_backups: int) -> None:
        files = sorted(self.backup_dir.glob("stocksync_export_*.json"))
        if len(files) <= max_backups:
            return
        for old in files[: len(files) - max_backups]:
            old.unlink(missing_ok=True)
