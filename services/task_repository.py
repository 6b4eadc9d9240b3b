"""Task repositories for the local device store and the remote store.

Both classes expose the same contract so the services can treat them
symmetrically. They differ in three places:

- ``create``: the local store records new rows as ``pending``; the remote
  store *is* the synced state, so its rows are always ``synced``.
- ``delete`` on a missing row: an error locally, a no-op remotely (the task
  may never have been pushed).
- ``mark_*``: status-only writes locally; plain updates remotely.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import delete as sa_delete, update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from core.logs import get_logger
from datetime_utils import utc_now
from models.task import (
    SyncStatus,
    Task,
    TaskCreate,
    can_transition,
    new_task_id,
    normalize_name,
    validate_fields,
)
from services.errors import NotFoundError, RepositoryError, StaleVersionError
from storage.db import SessionFactory


logger = get_logger("repository")


class TaskRepository:
    """SQL-backed implementation of the repository contract."""

    label = "store"
    default_status = SyncStatus.PENDING

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            raise RepositoryError(f"{self.label} error: {exc}") from exc

    # ----- reads -----
    def get_all(self, owner_id: str) -> List[Task]:
        with self._session() as session:
            stmt = (
                select(Task)
                .where(Task.owner_id == owner_id, Task.deleted_at == None)  # noqa: E711
                .order_by(Task.created_at.desc())
            )
            return list(session.exec(stmt))

    def get_by_id(self, task_id: str) -> Optional[Task]:
        with self._session() as session:
            return session.get(Task, task_id)

    def get_by_name(self, name: str, owner_id: str) -> Optional[Task]:
        with self._session() as session:
            stmt = select(Task).where(
                Task.name_key == normalize_name(name),
                Task.owner_id == owner_id,
                Task.deleted_at == None,  # noqa: E711
            )
            return session.exec(stmt).first()

    def get_by_status(self, owner_id: str, status: SyncStatus) -> List[Task]:
        with self._session() as session:
            stmt = (
                select(Task)
                .where(
                    Task.owner_id == owner_id,
                    Task.sync_status == SyncStatus(status).value,
                    Task.deleted_at == None,  # noqa: E711
                )
                .order_by(Task.created_at.desc())
            )
            return list(session.exec(stmt))

    def get_pending(self, owner_id: str) -> List[Task]:
        return self.get_by_status(owner_id, SyncStatus.PENDING)

    # ----- writes -----
    def _status_for_create(self, data: TaskCreate) -> str:
        return data.sync_status or self.default_status.value

    def create(self, data: TaskCreate) -> Task:
        now = utc_now()
        task = Task(
            id=data.id or new_task_id(),
            owner_id=data.owner_id,
            name=data.name,
            name_key=normalize_name(data.name),
            description=data.description,
            finished=data.finished,
            alarm_time=data.alarm_time,
            frequency=data.frequency,
            alarm_interval=data.alarm_interval,
            created_at=data.created_at or now,
            updated_at=data.updated_at or data.created_at or now,
            deleted_at=data.deleted_at,
            version=data.version,
            sync_status=self._status_for_create(data),
            sync_error=None,
        )
        with self._session() as session:
            session.add(task)
            session.commit()
            session.refresh(task)
        logger.debug("%s: created task %s v%s", self.label, task.id, task.version)
        return task

    def update(self, task_id: str, *, expected_version: Optional[int] = None, **changes: Any) -> Task:
        """Change only the supplied fields.

        ``version`` and ``sync_status`` are ordinary inputs here; the caller
        owns the concurrency policy. With ``expected_version`` the write is a
        compare-and-swap on the stored version.
        """

        values = validate_fields(changes)
        if "name" in values:
            values["name_key"] = normalize_name(values["name"])
        values.setdefault("updated_at", utc_now())

        with self._session() as session:
            stmt = sa_update(Task).where(Task.id == task_id)
            if expected_version is not None:
                stmt = stmt.where(Task.version == expected_version)
            result = session.connection().execute(stmt.values(**values))
            if result.rowcount == 0:
                session.rollback()
                current = session.get(Task, task_id)
                if current is None:
                    raise NotFoundError(f"Task {task_id} not found in {self.label}", task_id)
                raise StaleVersionError(
                    f"Task {task_id} is at version {current.version}, expected {expected_version}",
                    task_id,
                    expected_version=expected_version,
                    actual_version=current.version,
                )
            session.commit()
            return session.get(Task, task_id, populate_existing=True)

    def delete(self, task_id: str) -> None:
        now = utc_now()
        with self._session() as session:
            task = session.get(Task, task_id)
            if task is None:
                self._delete_missing(task_id)
                return
            task.deleted_at = now
            task.updated_at = now
            self._after_soft_delete(task)
            session.add(task)
            session.commit()

    def _delete_missing(self, task_id: str) -> None:
        raise NotFoundError(f"Task {task_id} not found in {self.label}", task_id)

    def _after_soft_delete(self, task: Task) -> None:
        pass

    def hard_delete(self, task_id: str) -> None:
        with self._session() as session:
            task = session.get(Task, task_id)
            if task is not None:
                session.delete(task)
                session.commit()

    # ----- batch conveniences -----
    def bulk_create(self, items: Iterable[TaskCreate]) -> List[Task]:
        return [self.create(item) for item in items]

    def bulk_update(self, items: Iterable[Tuple[str, Dict[str, Any]]]) -> List[Task]:
        return [self.update(task_id, **changes) for task_id, changes in items]

    def delete_all(self, owner_id: str) -> None:
        with self._session() as session:
            session.connection().execute(sa_delete(Task).where(Task.owner_id == owner_id))
            session.commit()

    # ----- sync status -----
    def mark_synced(self, task_id: str, version: int) -> None:
        raise NotImplementedError

    def mark_error(self, task_id: str, message: str) -> None:
        raise NotImplementedError

    def mark_conflict(self, task_id: str) -> None:
        raise NotImplementedError


class LocalTaskRepository(TaskRepository):
    """Device store: owns the durable copy and the sync bookkeeping."""

    label = "local"
    default_status = SyncStatus.PENDING

    def _after_soft_delete(self, task: Task) -> None:
        # The row survives so the queued DELETE can still reference it.
        task.sync_status = SyncStatus.PENDING.value

    def _set_status(self, task_id: str, status: SyncStatus, **fields: Any) -> None:
        with self._session() as session:
            task = session.get(Task, task_id)
            if task is None:
                raise NotFoundError(f"Task {task_id} not found in {self.label}", task_id)
            if not can_transition(task.sync_status, status):
                logger.warning(
                    "Unexpected sync transition for %s: %s -> %s",
                    task_id,
                    task.sync_status,
                    status.value,
                )
            task.sync_status = status.value
            for key, value in fields.items():
                setattr(task, key, value)
            session.add(task)
            session.commit()

    def mark_synced(self, task_id: str, version: int) -> None:
        self._set_status(task_id, SyncStatus.SYNCED, version=version, sync_error=None)

    def mark_error(self, task_id: str, message: str) -> None:
        self._set_status(task_id, SyncStatus.ERROR, sync_error=message)

    def mark_conflict(self, task_id: str) -> None:
        self._set_status(task_id, SyncStatus.CONFLICT)


class RemoteTaskRepository(TaskRepository):
    """Authoritative store; ids are the ones generated on the device."""

    label = "remote"
    default_status = SyncStatus.SYNCED

    def _status_for_create(self, data: TaskCreate) -> str:
        return SyncStatus.SYNCED.value

    def create(self, data: TaskCreate) -> Task:
        if data.id:
            existing = self.get_by_id(data.id)
            if existing is not None:
                # A retried CREATE whose first attempt already landed.
                logger.info("remote: task %s already exists, create skipped", data.id)
                return existing
        return super().create(data)

    def _delete_missing(self, task_id: str) -> None:
        logger.debug("remote: delete of unknown task %s ignored", task_id)

    def mark_synced(self, task_id: str, version: int) -> None:
        self.update(task_id, sync_status=SyncStatus.SYNCED, version=version, sync_error=None)

    def mark_error(self, task_id: str, message: str) -> None:
        self.update(task_id, sync_status=SyncStatus.ERROR, sync_error=message)

    def mark_conflict(self, task_id: str) -> None:
        self.update(task_id, sync_status=SyncStatus.CONFLICT)


__all__ = ["LocalTaskRepository", "RemoteTaskRepository", "TaskRepository"]
