"""ORM models shared by the local and remote task stores."""
from .task import Frequency, SyncStatus, Task, TaskCreate
from .sync_operation import OperationType, QueuedOperation, SyncOperation

__all__ = [
    "Frequency",
    "OperationType",
    "QueuedOperation",
    "SyncOperation",
    "SyncStatus",
    "Task",
    "TaskCreate",
]
