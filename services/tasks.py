from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from core.logs import get_logger
from core.settings import TASKS, TaskServiceSettings
from datetime_utils import ensure_utc
from models.sync_operation import OperationType
from models.task import MUTABLE_FIELDS, SyncStatus, Task, TaskCreate, validate_fields
from services.errors import (
    ConflictError,
    DuplicateTaskError,
    NotFoundError,
    StaleVersionError,
    TransactionError,
)
from services.sync_queue import SyncQueue
from services.task_repository import LocalTaskRepository, RemoteTaskRepository


logger = get_logger("tasks")

RESOLUTIONS = ("local", "remote")


def create_payload(task: Task) -> Dict[str, Any]:
    """Snapshot stored with a CREATE so the remote record can be rebuilt as of enqueue time."""

    payload = task.snapshot()
    payload.update(
        owner_id=task.owner_id,
        version=task.version,
        created_at=ensure_utc(task.created_at),
    )
    return payload


class TaskService:
    """Sole mutation path for tasks.

    Every write lands in the local store first. With ``sync_on_write`` the
    remote store is updated inside the same call and failures are
    compensated locally; otherwise an operation is queued for the Sync
    Service to apply later.
    """

    def __init__(
        self,
        local_repo: LocalTaskRepository,
        remote_repo: RemoteTaskRepository,
        queue: SyncQueue,
        settings: TaskServiceSettings = TASKS,
    ) -> None:
        self.local = local_repo
        self.remote = remote_repo
        self.queue = queue
        self.settings = settings
        self._listeners: Dict[str, set] = {
            "after_create": set(),
            "after_update": set(),
            "after_delete": set(),
        }

    # ------------------------------------------------------------------
    # Listeners (notification scheduling and other collaborators)
    def subscribe(self, event: str, callback: Callable[[str], None]) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unsupported event: {event}")
        self._listeners[event].add(callback)

    def unsubscribe(self, event: str, callback: Callable[[str], None]) -> None:
        if event not in self._listeners:
            return
        self._listeners[event].discard(callback)

    def _emit(self, event: str, task_id: str) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(task_id)
            except Exception:
                logger.exception("Listener for %s failed on task %s", event, task_id)

    @property
    def _immediate(self) -> bool:
        return self.settings.enable_sync and self.settings.sync_on_write

    # ------------------------------------------------------------------
    # Reads
    def get_all_tasks(self, owner_id: str) -> List[Task]:
        return self.local.get_all(owner_id)

    def get_task(self, task_id: str) -> Optional[Task]:
        task = self.local.get_by_id(task_id)
        if task is None or task.is_deleted:
            return None
        return task

    def get_pending_tasks(self, owner_id: str) -> List[Task]:
        return self.local.get_pending(owner_id)

    def get_conflict_tasks(self, owner_id: str) -> List[Task]:
        return self.local.get_by_status(owner_id, SyncStatus.CONFLICT)

    # ------------------------------------------------------------------
    # Writes
    def create_task(self, data: TaskCreate) -> Task:
        existing = self.local.get_by_name(data.name, data.owner_id)
        if existing is not None:
            raise DuplicateTaskError(f'A task with the name "{data.name}" already exists', data.name)

        task = self.local.create(data)

        if self._immediate:
            try:
                task = self._push_create(task)
            except Exception as exc:
                self._compensate_create(task, exc)
                raise TransactionError("Failed to sync task creation", exc) from exc
        elif self.settings.enable_sync:
            self.queue.enqueue(OperationType.CREATE, task.id, create_payload(task))

        self._emit("after_create", task.id)
        return task

    def update_task(self, task_id: str, **updates: Any) -> Task:
        changes = validate_fields(updates, allowed=MUTABLE_FIELDS)
        original = self.local.get_by_id(task_id)
        if original is None or original.is_deleted:
            raise NotFoundError(f"Task {task_id} not found", task_id)

        if "name" in changes:
            clash = self.local.get_by_name(changes["name"], original.owner_id)
            if clash is not None and clash.id != task_id:
                raise DuplicateTaskError(
                    f'A task with the name "{changes["name"]}" already exists', changes["name"]
                )

        updated = self.local.update(
            task_id,
            **changes,
            version=original.version + 1,
            sync_status=SyncStatus.PENDING,
        )

        if self._immediate:
            try:
                updated = self._push_update(updated, original.version)
            except ConflictError:
                self._rollback_update(original)
                raise
            except Exception as exc:
                self._rollback_update(original)
                raise TransactionError("Failed to sync task update", exc, rollback_data=original) from exc
        elif self.settings.enable_sync:
            self.queue.enqueue(
                OperationType.UPDATE,
                task_id,
                changes,
                previous_version=original.version,
            )

        self._emit("after_update", task_id)
        return updated

    def update_task_finished(self, task_id: str, finished: bool) -> Task:
        return self.update_task(task_id, finished=finished)

    def delete_task(self, task_id: str) -> None:
        # A tombstoned row is accepted so a failed immediate delete can be retried.
        task = self.local.get_by_id(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found", task_id)

        self.local.delete(task_id)

        if self._immediate:
            try:
                self.remote.delete(task_id)
                self.local.hard_delete(task_id)
            except Exception as exc:
                logger.warning("Remote delete of %s failed, tombstone kept: %s", task_id, exc)
                raise TransactionError("Failed to sync task deletion", exc, rollback_data=task) from exc
        elif self.settings.enable_sync:
            if not self.queue.has_pending(task_id, OperationType.DELETE):
                self.queue.enqueue(
                    OperationType.DELETE,
                    task_id,
                    {"id": task_id},
                    previous_version=task.version,
                )
        else:
            self.local.hard_delete(task_id)

        self._emit("after_delete", task_id)

    def resolve_conflict(self, task_id: str, resolution: str) -> Task:
        if resolution not in RESOLUTIONS:
            raise ValueError(f"Unsupported resolution: {resolution}")

        local_task = self.local.get_by_id(task_id)
        if local_task is None:
            raise NotFoundError(f"Task {task_id} not found", task_id)

        if resolution == "remote":
            remote_task = self.remote.get_by_id(task_id)
            if remote_task is None:
                raise NotFoundError(f"Remote task {task_id} not found", task_id)
            twin = self.local.get_by_name(remote_task.name, local_task.owner_id)
            if twin is not None and twin.id != task_id:
                raise DuplicateTaskError(
                    f'A task with the name "{remote_task.name}" already exists', remote_task.name
                )
            logger.info("Conflict on %s resolved with remote v%s", task_id, remote_task.version)
            return self.local.update(
                task_id,
                **remote_task.snapshot(),
                version=remote_task.version,
                sync_status=SyncStatus.SYNCED,
                sync_error=None,
                updated_at=remote_task.updated_at,
            )

        logger.info("Conflict on %s resolved with local v%s", task_id, local_task.version)
        self.queue.enqueue(
            OperationType.UPDATE,
            task_id,
            local_task.snapshot(),
            previous_version=local_task.version,
        )
        return self.local.update(
            task_id,
            sync_status=SyncStatus.PENDING,
            sync_error=None,
            updated_at=local_task.updated_at,
        )

    # ------------------------------------------------------------------
    # Immediate-mode helpers
    def _push_create(self, task: Task) -> Task:
        self.remote.create(TaskCreate.from_task(task))
        self.local.mark_synced(task.id, task.version)
        return self.local.get_by_id(task.id)

    def _push_update(self, task: Task, previous_version: int) -> Task:
        remote_task = self.remote.get_by_id(task.id)
        if remote_task is not None and remote_task.version != previous_version:
            raise ConflictError("Task was modified on another device", task, remote_task)

        try:
            self.remote.update(
                task.id,
                expected_version=previous_version,
                **task.snapshot(),
                version=task.version,
            )
        except StaleVersionError as exc:
            # Lost the race between the read above and the write.
            raise ConflictError(
                "Task was modified on another device",
                task,
                self.remote.get_by_id(task.id),
            ) from exc

        self.local.mark_synced(task.id, task.version)
        return self.local.get_by_id(task.id)

    def _compensate_create(self, task: Task, cause: Exception) -> None:
        logger.warning("Remote create of %s failed, removing local row: %s", task.id, cause)
        try:
            self.local.hard_delete(task.id)
        except Exception:
            logger.exception("Compensating delete of %s failed, row left orphaned", task.id)
            try:
                self.local.mark_error(task.id, str(cause))
            except Exception:
                logger.exception("Could not flag orphaned task %s", task.id)

    def _rollback_update(self, original: Task) -> None:
        logger.warning("Rolling back local update of %s to v%s", original.id, original.version)
        try:
            self.local.update(
                original.id,
                **original.snapshot(),
                version=original.version,
                sync_status=original.sync_status,
                sync_error=original.sync_error,
                updated_at=original.updated_at,
            )
        except Exception:
            logger.exception("Rollback of task %s failed", original.id)


__all__ = ["TaskService", "create_payload"]
