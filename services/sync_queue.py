from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import delete as sa_delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from core.logs import get_logger
from datetime_utils import utc_now
from models.sync_operation import OperationType, QueuedOperation, SyncOperation, encode_payload
from services.errors import RepositoryError
from storage.db import SessionFactory


logger = get_logger("queue")

MAX_ERROR_LENGTH = 1000


class SyncQueue:
    """Durable FIFO of pending remote mutations, stored next to the local tasks.

    Ordering is by row id, which only grows; the queue is global rather than
    per-owner because a device session belongs to a single user.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            raise RepositoryError(f"queue error: {exc}") from exc

    def _ordered(self):
        return select(SyncOperation).order_by(SyncOperation.id.asc())

    def enqueue(
        self,
        op_type: OperationType,
        task_id: str,
        payload: Optional[Dict[str, Any]] = None,
        previous_version: Optional[int] = None,
    ) -> QueuedOperation:
        record = SyncOperation(
            op_type=OperationType(op_type).value,
            task_id=task_id,
            payload=encode_payload(payload or {}),
            previous_version=previous_version,
            retry_count=0,
            created_at=utc_now(),
            last_error=None,
        )
        with self._session() as session:
            session.add(record)
            session.commit()
            session.refresh(record)
        logger.debug("Enqueued %s for task %s (op %s)", record.op_type, task_id, record.id)
        return QueuedOperation.from_row(record)

    def peek(self) -> Optional[QueuedOperation]:
        with self._session() as session:
            row = session.exec(self._ordered().limit(1)).first()
        return QueuedOperation.from_row(row) if row else None

    def dequeue(self) -> Optional[QueuedOperation]:
        """Remove and return the head regardless of what the caller does with it."""

        operation = self.peek()
        if operation is not None:
            self.remove(operation.id)
        return operation

    def remove(self, op_id: int) -> None:
        with self._session() as session:
            record = session.get(SyncOperation, op_id)
            if record:
                session.delete(record)
                session.commit()

    def retry(self, op_id: int) -> None:
        with self._session() as session:
            record = session.get(SyncOperation, op_id)
            if not record:
                return
            record.retry_count += 1
            session.add(record)
            session.commit()

    def mark_error(self, op_id: int, error: str) -> None:
        with self._session() as session:
            record = session.get(SyncOperation, op_id)
            if not record:
                return
            record.retry_count += 1
            record.last_error = (error or "")[:MAX_ERROR_LENGTH]
            session.add(record)
            session.commit()

    def get_all(self) -> List[QueuedOperation]:
        with self._session() as session:
            rows = list(session.exec(self._ordered()))
        return [QueuedOperation.from_row(row) for row in rows]

    def get_for_task(self, task_id: str) -> List[QueuedOperation]:
        with self._session() as session:
            stmt = self._ordered().where(SyncOperation.task_id == task_id)
            rows = list(session.exec(stmt))
        return [QueuedOperation.from_row(row) for row in rows]

    def has_pending(
        self,
        task_id: str,
        op_type: Optional[OperationType] = None,
        *,
        after_id: Optional[int] = None,
    ) -> bool:
        with self._session() as session:
            stmt = select(func.count()).select_from(SyncOperation).where(SyncOperation.task_id == task_id)
            if op_type is not None:
                stmt = stmt.where(SyncOperation.op_type == OperationType(op_type).value)
            if after_id is not None:
                stmt = stmt.where(SyncOperation.id > after_id)
            return int(session.exec(stmt).one()) > 0

    def get_size(self) -> int:
        with self._session() as session:
            return int(session.exec(select(func.count()).select_from(SyncOperation)).one())

    def clear(self) -> None:
        with self._session() as session:
            session.connection().execute(sa_delete(SyncOperation))
            session.commit()


__all__ = ["SyncQueue"]
