from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _handler(path: Path, level: int) -> RotatingFileHandler:
    fh = RotatingFileHandler(path, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    fh.setFormatter(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    fh.setLevel(level)
    return fh


def setup_logging(logs_dir: Path, level: int = logging.INFO) -> None:
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    if root.handlers:
        return

    root.addHandler(_handler(logs_dir / "app.log", logging.INFO))
    root.addHandler(_handler(logs_dir / "errors.log", logging.ERROR))

    # sync covers the engine, the pending queue and the broadcast channel
    sync_handler = _handler(logs_dir / "sync.log", logging.INFO)
    for name in ("stocksync.sync", "stocksync.broadcast"):
        logging.getLogger(name).addHandler(sync_handler)
        logging.getLogger(name).setLevel(logging.INFO)

    sales_handler = _handler(logs_dir / "sales.log", logging.INFO)
    logging.getLogger("stocksync.sales").addHandler(sales_handler)
    logging.getLogger("stocksync.sales").setLevel(logging.INFO)
