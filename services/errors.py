"""Error types raised by the repositories and the Task Service."""

from __future__ import annotations

from typing import Any, Optional

from models.task import Task


class TaskSyncError(Exception):
    """Base class for errors raised by the sync subsystem."""


class RepositoryError(TaskSyncError):
    """Storage failure; the original exception is kept as ``__cause__``."""


class NotFoundError(RepositoryError):
    def __init__(self, message: str, entity_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.entity_id = entity_id


class StaleVersionError(RepositoryError):
    """A compare-and-swap update found a different version in the store."""

    def __init__(
        self,
        message: str,
        entity_id: Optional[str] = None,
        *,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class DuplicateTaskError(TaskSyncError):
    def __init__(self, message: str, task_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.task_name = task_name


class ConflictError(TaskSyncError):
    """The remote copy changed since the version this write was based on."""

    def __init__(
        self,
        message: str,
        local_task: Optional[Task] = None,
        remote_task: Optional[Task] = None,
    ) -> None:
        super().__init__(message)
        self.local_task = local_task
        self.remote_task = remote_task


class TransactionError(TaskSyncError):
    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        rollback_data: Any = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        self.rollback_data = rollback_data

    def __str__(self) -> str:
        base = super().__str__()
        if self.cause is not None:
            return f"{base}: {self.cause}"
        return base


__all__ = [
    "ConflictError",
    "DuplicateTaskError",
    "NotFoundError",
    "RepositoryError",
    "StaleVersionError",
    "TaskSyncError",
    "TransactionError",
]
