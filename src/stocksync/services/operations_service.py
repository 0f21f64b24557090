from __future__ import annotations

import json
import logging
import zipfile
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthReport:
    storage_integrity: str
    storage_size_bytes: int
    logs_count: int
    sync_state: str
    pending_updates: int
    dead_letters: int
    last_sync: str | None
    generated_at: str


class OperationsService:
    def __init__(self, storage, engine, db_path: Path | str, logs_dir: Path | str, backup_dir: Path | str):
        self.storage = storage
        self.engine = engine
        self.db_path = Path(db_path)
        self.logs_dir = Path(logs_dir)
        self.backup_dir = Path(backup_dir)

    def run_health_check(self) -> HealthReport:
        integrity = self.storage.integrity_check()
        logs_count = len(list(self.logs_dir.glob("*.log"))) if self.logs_dir.exists() else 0
        size = self.db_path.stat().st_size if self.db_path.exists() else 0
        status = self.engine.status()
        return HealthReport(
            storage_integrity=integrity,
            storage_size_bytes=size,
            logs_count=logs_count,
            sync_state=status.state,
            pending_updates=status.pending,
            dead_letters=status.dead_letters,
            last_sync=status.last_sync,
            generated_at=datetime.now().isoformat(timespec="seconds"),
        )

    def export_diagnostics(self, target_dir: Path | str | None = None) -> Path:
        out_dir = Path(target_dir) if target_dir else self.db_path.parent
        out_dir.mkdir(parents=True, exist_ok=True)

        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        zip_path = out_dir / f"diagnostics_{ts}.zip"
        report = self.run_health_check()

        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            if self.db_path.exists():
                zf.write(self.db_path, arcname=self.db_path.name)

            if self.logs_dir.exists():
                for f in sorted(self.logs_dir.glob("*.log")):
                    zf.write(f, arcname=f"logs/{f.name}")

            if self.backup_dir.exists():
                latest = sorted(self.backup_dir.glob("stocksync_export_*.json"))
                for f in latest[-3:]:
                    zf.write(f, arcname=f"backups/{f.name}")

            zf.writestr("health_report.json", json.dumps(asdict(report), ensure_ascii=False, indent=2))
            zf.writestr(
                "sync_queue.json",
                json.dumps(
                    {
                        "pending": [e.to_dict() for e in self.engine.queue.entries()],
                        "dead_letters": [d.to_dict() for d in self.engine.queue.dead_letters()],
                    },
                    ensure_ascii=False,
                    indent=2,
                ),
            )

        log.info("diagnostics_exported path=%s", zip_path)
        return zip_path
