from __future__ import annotations

import asyncio
import threading
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.logs import get_logger
from core.settings import SYNC, SyncSettings
from datetime_utils import is_later
from models.sync_operation import OperationType, QueuedOperation
from models.task import MUTABLE_FIELDS, SyncStatus, Task, TaskCreate, normalize_name
from services.errors import StaleVersionError
from services.sync_queue import SyncQueue
from services.task_repository import LocalTaskRepository, RemoteTaskRepository
from services.tasks import create_payload


ConnectivityListener = Callable[[Callable[[bool], None]], Callable[[], None]]


class DrainOutcome(str, Enum):
    IDLE = "idle"
    EMPTY = "empty"
    APPLIED = "applied"
    CONFLICT = "conflict"
    DEFERRED = "deferred"
    DROPPED = "dropped"


# Outcomes that removed the head of the queue; draining continues right away.
_ADVANCED = {DrainOutcome.APPLIED, DrainOutcome.CONFLICT, DrainOutcome.DROPPED}


@dataclass
class MergeResult:
    imported: int = 0
    overwritten: int = 0
    creates_enqueued: int = 0
    updates_enqueued: int = 0
    removed: int = 0
    skipped: int = 0
    failed: int = 0

    def changed(self) -> bool:
        return any(
            (
                self.imported,
                self.overwritten,
                self.creates_enqueued,
                self.updates_enqueued,
                self.removed,
            )
        )

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def _current_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class SyncService:
    """Background coordinator: drains the queue and reconciles snapshots.

    Work is scheduled as callbacks on one event loop. A non-blocking lock
    keeps a single drain or full sync running, so at most one remote call is
    in flight even when a reconnect arrives on another thread; a contended
    attempt is deferred. Without a running loop the service still works when
    driven by explicit ``process_queue`` and ``full_sync`` calls.
    """

    def __init__(
        self,
        local_repo: LocalTaskRepository,
        remote_repo: RemoteTaskRepository,
        queue: SyncQueue,
        settings: SyncSettings = SYNC,
        connectivity: Optional[ConnectivityListener] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.local = local_repo
        self.remote = remote_repo
        self.queue = queue
        self.settings = settings
        self.logger = get_logger("sync")
        self._connectivity = connectivity
        self._loop_override = loop

        self._running = False
        self._owner_id: Optional[str] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._interval_handle: Optional[asyncio.TimerHandle] = None
        self._full_sync_handle: Optional[asyncio.TimerHandle] = None
        self._drain_handle: Optional[asyncio.TimerHandle] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        # Connectivity callbacks may arrive on another thread; one drain at a time.
        self._drain_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Control surface
    def start(self, owner_id: str) -> None:
        if self._running:
            return
        self._owner_id = owner_id
        self._running = True
        self._loop = self._loop_override or _current_loop()

        if self._loop is not None:
            self._arm_interval()
            if self.settings.full_sync_interval_sec > 0:
                self._arm_full_sync()
        else:
            self.logger.info("No running event loop; periodic draining disabled")

        if self._connectivity is not None:
            self._unsubscribe = self._connectivity(self._on_connectivity_change)

        self.logger.info("Sync started for owner %s", owner_id)
        self.process_queue()

    def stop(self) -> None:
        for handle in (self._interval_handle, self._full_sync_handle, self._drain_handle):
            if handle is not None:
                handle.cancel()
        self._interval_handle = None
        self._full_sync_handle = None
        self._drain_handle = None

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        if self._running:
            self.logger.info("Sync stopped for owner %s", self._owner_id)
        self._running = False
        self._owner_id = None
        self._loop = None

    def is_active(self) -> bool:
        return self._running

    @property
    def owner_id(self) -> Optional[str]:
        return self._owner_id

    def get_queue_size(self) -> int:
        return self.queue.get_size()

    def status(self) -> dict:
        return {
            "active": self._running,
            "ownerId": self._owner_id,
            "queueSize": self.get_queue_size(),
        }

    # ------------------------------------------------------------------
    # Timers
    def _arm_interval(self) -> None:
        self._interval_handle = self._loop.call_later(self.settings.interval_sec, self._on_interval)

    def _on_interval(self) -> None:
        self._interval_handle = None
        if not self._running:
            return
        self._arm_interval()
        self.process_queue()

    def _arm_full_sync(self) -> None:
        self._full_sync_handle = self._loop.call_later(
            self.settings.full_sync_interval_sec, self._on_full_sync
        )

    def _on_full_sync(self) -> None:
        self._full_sync_handle = None
        if not self._running:
            return
        self._arm_full_sync()
        self.full_sync()

    def _schedule_drain(self, delay: float) -> None:
        if self._loop is None or not self._running or self._drain_handle is not None:
            return
        self._drain_handle = self._loop.call_later(delay, self._on_drain_timer)

    def _on_drain_timer(self) -> None:
        self._drain_handle = None
        self.process_queue()

    def _on_connectivity_change(self, connected: bool) -> None:
        if not connected or not self._running:
            return
        self.logger.info("Back online, draining queue")
        if self._loop is not None:
            # May be called from the network watcher's thread.
            self._loop.call_soon_threadsafe(self._schedule_drain, 0)
        else:
            self.process_queue()

    # ------------------------------------------------------------------
    # Queue drain
    def process_queue(self) -> DrainOutcome:
        """Attempt the head of the queue once.

        A failing head stays in place until it succeeds or runs out of
        retries, so nothing behind it is applied out of order.
        """

        if not self._running:
            return DrainOutcome.IDLE
        outcome = self._process_one()
        if outcome in _ADVANCED:
            self._schedule_drain(self.settings.drain_delay_sec)
        return outcome

    def _process_one(self) -> DrainOutcome:
        if not self._drain_lock.acquire(blocking=False):
            self.logger.debug("Drain already in progress, attempt deferred")
            return DrainOutcome.DEFERRED
        try:
            return self._process_head()
        finally:
            self._drain_lock.release()

    def _process_head(self) -> DrainOutcome:
        try:
            operation = self.queue.peek()
        except Exception:
            self.logger.exception("Could not read the sync queue")
            return DrainOutcome.DEFERRED
        if operation is None:
            return DrainOutcome.EMPTY

        try:
            outcome = self._execute(operation)
        except Exception as exc:
            return self._handle_failure(operation, exc)

        try:
            self.queue.remove(operation.id)
        except Exception:
            self.logger.exception("Could not remove applied op %s", operation.id)
            return DrainOutcome.DEFERRED
        self.logger.info(
            "%s %s for task %s (op %s)",
            operation.type.value,
            outcome.value,
            operation.task_id,
            operation.id,
        )
        return outcome

    def _handle_failure(self, operation: QueuedOperation, exc: Exception) -> DrainOutcome:
        message = str(exc) or exc.__class__.__name__
        try:
            if operation.retry_count < self.settings.max_retries:
                self.logger.warning(
                    "%s for task %s failed (attempt %s): %s",
                    operation.type.value,
                    operation.task_id,
                    operation.retry_count + 1,
                    message,
                )
                self.queue.mark_error(operation.id, message)
                return DrainOutcome.DEFERRED

            self.logger.error(
                "%s for task %s dropped after %s attempts: %s",
                operation.type.value,
                operation.task_id,
                operation.retry_count + 1,
                message,
            )
            self.queue.remove(operation.id)
        except Exception:
            self.logger.exception("Could not record failure of op %s", operation.id)
            return DrainOutcome.DEFERRED

        try:
            self.local.mark_error(operation.task_id, message)
        except Exception:
            self.logger.exception("Could not flag task %s as failed", operation.task_id)
        return DrainOutcome.DROPPED

    def _execute(self, operation: QueuedOperation) -> DrainOutcome:
        if operation.type is OperationType.CREATE:
            return self._apply_create(operation)
        if operation.type is OperationType.UPDATE:
            return self._apply_update(operation)
        return self._apply_delete(operation)

    def _apply_create(self, operation: QueuedOperation) -> DrainOutcome:
        task = self.local.get_by_id(operation.task_id)
        if task is None:
            self.logger.info("Task %s is gone locally, CREATE skipped", operation.task_id)
            return DrainOutcome.APPLIED

        payload = operation.payload
        fields = {key: payload[key] for key in MUTABLE_FIELDS if key in payload} or task.snapshot()
        data = TaskCreate.from_task(
            task,
            **fields,
            owner_id=payload.get("owner_id", task.owner_id),
            version=payload.get("version", 1),
            created_at=payload.get("created_at") or task.created_at,
            updated_at=None,
        )
        self.remote.create(data)
        self._confirm(operation, task.id, data.version)
        return DrainOutcome.APPLIED

    def _apply_update(self, operation: QueuedOperation) -> DrainOutcome:
        task = self.local.get_by_id(operation.task_id)
        if task is None:
            self.logger.info("Task %s is gone locally, UPDATE skipped", operation.task_id)
            return DrainOutcome.APPLIED

        remote_task = self.remote.get_by_id(task.id)
        expected = operation.previous_version
        if expected is not None and remote_task is not None and remote_task.version != expected:
            return self._conflict(task.id, expected, remote_task.version)

        version = self._pushed_version(operation, task)
        fields = {key: value for key, value in operation.payload.items() if key in MUTABLE_FIELDS}

        if remote_task is None:
            self.logger.info("Task %s missing remotely, pushing it as a new record", task.id)
            self.remote.create(TaskCreate.from_task(task, **fields, version=version))
        else:
            try:
                self.remote.update(task.id, expected_version=expected, **fields, version=version)
            except StaleVersionError as exc:
                return self._conflict(task.id, expected, exc.actual_version)

        self._confirm(operation, task.id, version)
        return DrainOutcome.APPLIED

    def _apply_delete(self, operation: QueuedOperation) -> DrainOutcome:
        # Delete wins regardless of the remote version.
        self.remote.delete(operation.task_id)
        self.local.hard_delete(operation.task_id)
        return DrainOutcome.APPLIED

    def _pushed_version(self, operation: QueuedOperation, task: Task) -> int:
        if operation.previous_version is None:
            return task.version
        produced = operation.previous_version + 1
        if self.queue.has_pending(task.id, after_id=operation.id):
            return produced
        # Last queued change for the task: never move behind the local row.
        return max(produced, task.version)

    def _conflict(self, task_id: str, expected: Optional[int], actual: Optional[int]) -> DrainOutcome:
        self.logger.warning(
            "Conflict on task %s: remote at v%s, operation expected v%s",
            task_id,
            actual,
            expected,
        )
        self.local.mark_conflict(task_id)
        return DrainOutcome.CONFLICT

    def _confirm(self, operation: QueuedOperation, task_id: str, version: int) -> None:
        if self.queue.has_pending(task_id, after_id=operation.id):
            return
        current = self.local.get_by_id(task_id)
        if current is None:
            return
        if current.version > version:
            self.logger.info(
                "Task %s is at v%s locally, pushed v%s; left pending",
                task_id,
                current.version,
                version,
            )
            return
        self.local.mark_synced(task_id, version)

    def _drain_available(self) -> None:
        while True:
            outcome = self._process_head()
            if outcome not in _ADVANCED:
                break

    # ------------------------------------------------------------------
    # Reconciliation
    def full_sync(self) -> MergeResult:
        result = MergeResult()
        owner_id = self._owner_id
        if not owner_id:
            return result

        if not self._drain_lock.acquire(blocking=False):
            self.logger.info("Drain in progress, full sync skipped")
            return result
        try:
            self._drain_available()

            try:
                remote_tasks = self.remote.get_all(owner_id)
                local_tasks = self.local.get_all(owner_id)
            except Exception:
                self.logger.exception("Full sync aborted: could not fetch snapshots")
                return result

            self._merge(local_tasks, remote_tasks, result)
        finally:
            self._drain_lock.release()
        self.logger.info("Full sync for %s: %s", owner_id, result.as_dict())
        return result

    force_sync = full_sync

    def _guard(self, result: MergeResult, task_id: str, action: Callable[[], Any]) -> Any:
        try:
            return action()
        except Exception:
            self.logger.exception("Merge failed for task %s", task_id)
            result.failed += 1
            return None

    def _merge(self, local: List[Task], remote: List[Task], result: MergeResult) -> None:
        local_by_id = {task.id: task for task in local}
        remote_by_id = {task.id: task for task in remote}
        local_names = {normalize_name(task.name) for task in local}

        for remote_task in remote:
            if remote_task.id in local_by_id:
                continue
            key = normalize_name(remote_task.name)
            if key in local_names:
                result.skipped += 1
                continue
            if self._guard(result, remote_task.id, lambda t=remote_task: self._import(t)):
                result.imported += 1
                local_names.add(key)

        for local_task in local:
            if local_task.id in remote_by_id:
                continue
            if local_task.sync_status == SyncStatus.PENDING:
                if self._guard(result, local_task.id, lambda t=local_task: self._enqueue_create(t)):
                    result.creates_enqueued += 1
            elif local_task.sync_status == SyncStatus.SYNCED:
                if self._guard(result, local_task.id, lambda t=local_task: self._drop_if_deleted_remotely(t)):
                    result.removed += 1

        for local_task in local:
            remote_task = remote_by_id.get(local_task.id)
            if remote_task is None or remote_task.version == local_task.version:
                continue
            outcome = self._guard(
                result,
                local_task.id,
                lambda lt=local_task, rt=remote_task: self._reconcile(lt, rt),
            )
            if outcome == "remote":
                result.overwritten += 1
            elif outcome == "local":
                result.updates_enqueued += 1
            elif outcome == "skipped":
                result.skipped += 1

    def _import(self, remote_task: Task) -> bool:
        # A local tombstone means a delete is still on its way out.
        if self.local.get_by_id(remote_task.id) is not None:
            return False
        self.local.create(TaskCreate.from_task(remote_task, sync_status=SyncStatus.SYNCED))
        return True

    def _enqueue_create(self, local_task: Task) -> bool:
        if self.queue.has_pending(local_task.id):
            return False
        self.queue.enqueue(OperationType.CREATE, local_task.id, create_payload(local_task))
        return True

    def _drop_if_deleted_remotely(self, local_task: Task) -> bool:
        remote_task = self.remote.get_by_id(local_task.id)
        if remote_task is None or not remote_task.is_deleted:
            return False
        if self.queue.has_pending(local_task.id):
            return False
        self.logger.info("Task %s was deleted remotely, removing local copy", local_task.id)
        self.local.hard_delete(local_task.id)
        return True

    def _reconcile(self, local_task: Task, remote_task: Task) -> str:
        if local_task.sync_status == SyncStatus.CONFLICT or self.queue.has_pending(local_task.id):
            return "skipped"

        if is_later(remote_task.updated_at, local_task.updated_at):
            twin = self.local.get_by_name(remote_task.name, local_task.owner_id)
            if twin is not None and twin.id != local_task.id:
                self.logger.warning(
                    "Remote rename of %s to %r clashes with local task %s",
                    local_task.id,
                    remote_task.name,
                    twin.id,
                )
                self.local.mark_conflict(local_task.id)
                return "skipped"
            self.local.update(
                local_task.id,
                **remote_task.snapshot(),
                version=remote_task.version,
                sync_status=SyncStatus.SYNCED,
                sync_error=None,
                updated_at=remote_task.updated_at,
            )
            return "remote"

        self.queue.enqueue(
            OperationType.UPDATE,
            local_task.id,
            local_task.snapshot(),
            previous_version=remote_task.version,
        )
        return "local"


__all__ = ["DrainOutcome", "MergeResult", "SyncService"]
