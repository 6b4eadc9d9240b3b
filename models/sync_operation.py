"""SQLModel table for queued synchronization operations."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlmodel import Field, SQLModel

from datetime_utils import ensure_utc, parse_iso, to_iso, utc_now


class OperationType(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


_DATETIME_KEYS = {"alarm_time", "created_at", "updated_at", "deleted_at"}


class SyncOperation(SQLModel, table=True):
    # AUTOINCREMENT keeps ids strictly increasing, so id order is insertion order.
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    op_type: str = Field(index=True)
    task_id: str = Field(index=True)
    payload: str = "{}"
    previous_version: Optional[int] = None
    retry_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=utc_now, index=True)
    last_error: Optional[str] = None


def encode_payload(payload: Dict[str, Any]) -> str:
    def _default(value: Any) -> Any:
        if isinstance(value, datetime):
            return to_iso(value)
        if isinstance(value, Enum):
            return value.value
        raise TypeError(f"Unserializable payload value: {value!r}")

    return json.dumps(payload, ensure_ascii=False, sort_keys=True, default=_default)


def decode_payload(raw: Optional[str]) -> Dict[str, Any]:
    try:
        data = json.loads(raw or "{}")
    except json.JSONDecodeError:
        return {}
    if not isinstance(data, dict):
        return {}
    for key in _DATETIME_KEYS & set(data):
        if isinstance(data[key], str):
            data[key] = parse_iso(data[key])
    return data


@dataclass
class QueuedOperation:
    id: int
    type: OperationType
    task_id: str
    payload: Dict[str, Any]
    previous_version: Optional[int]
    retry_count: int
    created_at: datetime
    last_error: Optional[str]

    @classmethod
    def from_row(cls, row: SyncOperation) -> "QueuedOperation":
        return cls(
            id=row.id,
            type=OperationType(row.op_type),
            task_id=row.task_id,
            payload=decode_payload(row.payload),
            previous_version=row.previous_version,
            retry_count=row.retry_count,
            created_at=ensure_utc(row.created_at),
            last_error=row.last_error,
        )


__all__ = [
    "OperationType",
    "QueuedOperation",
    "SyncOperation",
    "decode_payload",
    "encode_payload",
]
