from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys

from stocksync.domain.errors import ValidationError


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path
    backup_dir: Path


@dataclass(frozen=True)
class SyncSettings:
    remote_url: str = ""
    remote_key: str = ""
    account_id: str = ""
    remote_timeout: float = 10.0
    drain_interval: float = 180.0
    max_attempts: int = 3
    ledger_capacity: int = 1000

    @property
    def remote_configured(self) -> bool:
        return bool(self.remote_url and self.remote_key)


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "StockSync") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "stocksync.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs, backup_dir=base / "backups")


def _number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw)
    except ValueError as e:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ValidationError(f"{name} must be > 0")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> SyncSettings:
    """Read sync settings from STOCKSYNC_* environment variables."""
    env = os.environ if env is None else env
    return SyncSettings(
        remote_url=env.get("STOCKSYNC_REMOTE_URL", "").strip().rstrip("/"),
        remote_key=env.get("STOCKSYNC_REMOTE_KEY", "").strip(),
        account_id=env.get("STOCKSYNC_ACCOUNT_ID", "").strip(),
        remote_timeout=_number(env, "STOCKSYNC_REMOTE_TIMEOUT", 10.0, float),
        drain_interval=_number(env, "STOCKSYNC_DRAIN_INTERVAL", 180.0, float),
        max_attempts=_number(env, "STOCKSYNC_MAX_ATTEMPTS", 3, int),
        ledger_capacity=_number(env, "STOCKSYNC_LEDGER_CAPACITY", 1000, int),
    )
