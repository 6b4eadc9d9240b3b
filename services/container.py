"""Wiring of repositories, queue and services for one device session."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from core.settings import SYNC, TASKS, SyncSettings, TaskServiceSettings
from services.sync_queue import SyncQueue
from services.sync_service import ConnectivityListener, SyncService
from services.task_repository import LocalTaskRepository, RemoteTaskRepository
from services.tasks import TaskService
from storage.db import SessionFactory


@dataclass
class Container:
    local: LocalTaskRepository
    remote: RemoteTaskRepository
    queue: SyncQueue
    tasks: TaskService
    sync: SyncService


def build_container(
    local_sessions: SessionFactory,
    remote_sessions: SessionFactory,
    *,
    task_settings: TaskServiceSettings = TASKS,
    sync_settings: SyncSettings = SYNC,
    connectivity: Optional[ConnectivityListener] = None,
    loop=None,
) -> Container:
    local = LocalTaskRepository(local_sessions)
    remote = RemoteTaskRepository(remote_sessions)
    # The queue shares the local store so a task write and its operation live together.
    queue = SyncQueue(local_sessions)
    return Container(
        local=local,
        remote=remote,
        queue=queue,
        tasks=TaskService(local, remote, queue, task_settings),
        sync=SyncService(local, remote, queue, sync_settings, connectivity=connectivity, loop=loop),
    )


__all__ = ["Container", "build_container"]
