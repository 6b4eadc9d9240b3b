"""Versioned task record and its sync lifecycle."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlmodel import Field, SQLModel

from datetime_utils import ensure_utc, utc_now


class SyncStatus(str, Enum):
    SYNCED = "synced"
    PENDING = "pending"
    CONFLICT = "conflict"
    ERROR = "error"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    SINGLE = "single"


# Fields a caller may change through the Task Service.
MUTABLE_FIELDS = (
    "name",
    "description",
    "finished",
    "alarm_time",
    "frequency",
    "alarm_interval",
)

# Fields the sync machinery sets explicitly.
BOOKKEEPING_FIELDS = (
    "updated_at",
    "deleted_at",
    "version",
    "sync_status",
    "sync_error",
)

UPDATABLE_FIELDS = MUTABLE_FIELDS + BOOKKEEPING_FIELDS


SYNC_TRANSITIONS = {
    SyncStatus.PENDING: {SyncStatus.PENDING, SyncStatus.SYNCED, SyncStatus.CONFLICT, SyncStatus.ERROR},
    SyncStatus.SYNCED: {SyncStatus.SYNCED, SyncStatus.PENDING, SyncStatus.CONFLICT},
    SyncStatus.CONFLICT: {SyncStatus.CONFLICT, SyncStatus.PENDING, SyncStatus.SYNCED},
    SyncStatus.ERROR: {SyncStatus.ERROR, SyncStatus.PENDING, SyncStatus.SYNCED},
}


def new_task_id() -> str:
    return uuid.uuid4().hex


def normalize_name(name: Optional[str]) -> str:
    """Key used for per-owner name uniqueness: trimmed and lowercased."""

    return (name or "").strip().lower()


def can_transition(current: Any, target: Any) -> bool:
    try:
        src = SyncStatus(current)
        dst = SyncStatus(target)
    except ValueError:
        return False
    return dst in SYNC_TRANSITIONS[src]


class Task(SQLModel, table=True):
    id: str = Field(default_factory=new_task_id, primary_key=True)
    owner_id: str = Field(index=True)
    name: str
    name_key: str = Field(index=True)
    description: Optional[str] = None
    finished: bool = False
    alarm_time: datetime
    frequency: str = Field(default=Frequency.SINGLE.value)
    alarm_interval: int = 1
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    deleted_at: Optional[datetime] = Field(default=None, index=True)
    version: int = 1
    sync_status: str = Field(default=SyncStatus.PENDING.value, index=True)
    sync_error: Optional[str] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def snapshot(self) -> Dict[str, Any]:
        """User-editable fields, as pushed to the other store."""

        return {name: getattr(self, name) for name in MUTABLE_FIELDS}


def validate_fields(fields: Dict[str, Any], *, allowed=UPDATABLE_FIELDS) -> Dict[str, Any]:
    """Check and coerce a partial field mapping; raises ``ValueError``."""

    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValueError(f"Unsupported task fields: {', '.join(sorted(unknown))}")

    cleaned = dict(fields)
    if "name" in cleaned:
        name = (cleaned["name"] or "").strip()
        if not name:
            raise ValueError("Task name must not be empty")
        cleaned["name"] = name
    if "frequency" in cleaned:
        cleaned["frequency"] = Frequency(cleaned["frequency"]).value
    if "alarm_interval" in cleaned:
        interval = cleaned["alarm_interval"]
        if isinstance(interval, bool) or not isinstance(interval, int) or interval <= 0:
            raise ValueError("alarm_interval must be a positive integer")
    if "finished" in cleaned:
        cleaned["finished"] = bool(cleaned["finished"])
    if "sync_status" in cleaned:
        cleaned["sync_status"] = SyncStatus(cleaned["sync_status"]).value
    if "version" in cleaned and int(cleaned["version"]) < 1:
        raise ValueError("version starts at 1")
    for key in ("alarm_time", "updated_at", "deleted_at"):
        if key in cleaned:
            cleaned[key] = ensure_utc(cleaned[key])
    if "alarm_time" in cleaned and cleaned["alarm_time"] is None:
        raise ValueError("alarm_time is required")
    return cleaned


@dataclass
class TaskCreate:
    name: str
    alarm_time: datetime
    frequency: str
    alarm_interval: int
    owner_id: str
    description: Optional[str] = None
    finished: bool = False
    deleted_at: Optional[datetime] = None
    # Set when importing or pushing an existing record; a fresh local task leaves them unset.
    id: Optional[str] = None
    version: int = 1
    sync_status: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.owner_id:
            raise ValueError("owner_id is required")
        cleaned = validate_fields(
            {
                "name": self.name,
                "alarm_time": self.alarm_time,
                "frequency": self.frequency,
                "alarm_interval": self.alarm_interval,
                "finished": self.finished,
                "version": self.version,
            }
        )
        self.name = cleaned["name"]
        self.alarm_time = cleaned["alarm_time"]
        self.frequency = cleaned["frequency"]
        self.finished = cleaned["finished"]
        if self.sync_status is not None:
            self.sync_status = SyncStatus(self.sync_status).value

    @classmethod
    def from_task(cls, task: Task, **overrides: Any) -> "TaskCreate":
        """Copy an existing record, keeping its id, version and timestamps."""

        values: Dict[str, Any] = dict(
            task.snapshot(),
            owner_id=task.owner_id,
            id=task.id,
            version=task.version,
            created_at=ensure_utc(task.created_at),
            updated_at=ensure_utc(task.updated_at),
        )
        values.update(overrides)
        return cls(**values)


__all__ = [
    "BOOKKEEPING_FIELDS",
    "Frequency",
    "MUTABLE_FIELDS",
    "SyncStatus",
    "Task",
    "TaskCreate",
    "UPDATABLE_FIELDS",
    "can_transition",
    "new_task_id",
    "normalize_name",
    "validate_fields",
]
