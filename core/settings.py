"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(env or os.environ)
    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "TaskSync"


DATA_DIR = get_default_data_dir(APP_NAME)
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "tasks.db"
CONFIG_PATH = DATA_DIR / "config.json"
SYNC_LOG_PATH = LOG_DIR / "sync.log"


@dataclass(frozen=True)
class TaskServiceSettings:
    enable_sync: bool = True
    # False: queued mode, True: push to the remote store inside the write call
    sync_on_write: bool = False


TASKS = TaskServiceSettings()


@dataclass(frozen=True)
class SyncSettings:
    interval_sec: float = 30.0
    max_retries: int = 3
    drain_delay_sec: float = 0.1
    full_sync_interval_sec: float = 300.0


SYNC = SyncSettings()


@dataclass(frozen=True)
class RemoteSettings:
    url: Optional[str] = field(default_factory=lambda: os.environ.get("TASKSYNC_REMOTE_URL"))
    echo: bool = False


REMOTE = RemoteSettings()


@dataclass(frozen=True)
class LogSettings:
    path: Path = SYNC_LOG_PATH
    max_bytes: int = 1_000_000
    backup_count: int = 3
    level: str = "INFO"


LOGGING = LogSettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "LOG_DIR",
    "DB_PATH",
    "CONFIG_PATH",
    "SYNC_LOG_PATH",
    "TASKS",
    "SYNC",
    "REMOTE",
    "LOGGING",
    "TaskServiceSettings",
    "SyncSettings",
    "RemoteSettings",
    "LogSettings",
    "get_default_data_dir",
]
