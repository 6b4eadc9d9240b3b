import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
import sys

# Keep the data dir (and the sync log) out of the real user profile.
_DATA_HOME = tempfile.mkdtemp(prefix="tasksync-tests-")
os.environ["XDG_DATA_HOME"] = _DATA_HOME
os.environ["APPDATA"] = _DATA_HOME

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from core.settings import SyncSettings, TaskServiceSettings
from datetime_utils import UTC
from models import TaskCreate
from services.sync_queue import SyncQueue
from services.sync_service import SyncService
from services.task_repository import LocalTaskRepository, RemoteTaskRepository
from services.tasks import TaskService
from storage.db import create_store_engine, init_db, init_remote_db, make_session_factory


OWNER = "user-1"
ALARM = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


def make_data(name, /, owner_id=OWNER, **overrides):
    values = dict(
        name=name,
        alarm_time=ALARM,
        frequency="daily",
        alarm_interval=1,
        owner_id=owner_id,
    )
    values.update(overrides)
    return TaskCreate(**values)


def at(minutes):
    """A fixed instant, ``minutes`` after the reference alarm time."""

    return ALARM + timedelta(minutes=minutes)


class FlakyRemote(RemoteTaskRepository):
    """Remote repository whose writes can be told to fail."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.failures = {}
        self.calls = []

    def fail(self, method, times=None, error=None):
        """Fail ``method`` the next ``times`` calls (forever when ``None``)."""

        self.failures[method] = [times, error or ConnectionError(f"remote {method} unavailable")]

    def heal(self, method=None):
        if method is None:
            self.failures.clear()
        else:
            self.failures.pop(method, None)

    def _maybe_fail(self, method):
        self.calls.append(method)
        entry = self.failures.get(method)
        if entry is None:
            return
        times, error = entry
        if times is not None:
            if times <= 0:
                self.failures.pop(method)
                return
            entry[0] = times - 1
        raise error

    def create(self, data):
        self._maybe_fail("create")
        return super().create(data)

    def update(self, task_id, *, expected_version=None, **changes):
        self._maybe_fail("update")
        return super().update(task_id, expected_version=expected_version, **changes)

    def delete(self, task_id):
        self._maybe_fail("delete")
        return super().delete(task_id)

    def get_all(self, owner_id):
        self._maybe_fail("get_all")
        return super().get_all(owner_id)


class FlakyLocal(LocalTaskRepository):
    """Local repository whose hard deletes can be told to fail."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.fail_hard_delete = False

    def hard_delete(self, task_id):
        if self.fail_hard_delete:
            raise OSError("disk is read-only")
        return super().hard_delete(task_id)


class FakeHandle:
    def __init__(self, delay, callback, args):
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.done = False

    @property
    def name(self):
        return getattr(self.callback, "__name__", repr(self.callback))

    def cancel(self):
        self.cancelled = True

    def run(self):
        if self.cancelled or self.done:
            return
        self.done = True
        self.callback(*self.args)


class FakeLoop:
    """Records ``call_later`` / ``call_soon_threadsafe`` and runs them on demand."""

    def __init__(self):
        self.handles = []
        self.soon = []

    def call_later(self, delay, callback, *args):
        handle = FakeHandle(delay, callback, args)
        self.handles.append(handle)
        return handle

    def call_soon_threadsafe(self, callback, *args):
        self.soon.append((callback, args))

    def active(self, name=None):
        return [
            h
            for h in self.handles
            if not h.cancelled and not h.done and (name is None or h.name == name)
        ]

    def run_soon(self):
        pending, self.soon = self.soon, []
        for callback, args in pending:
            callback(*args)

    def fire(self, name):
        """Run every active handle whose callback is ``name``; returns how many ran."""

        handles = self.active(name)
        for handle in handles:
            handle.run()
        return len(handles)


@pytest.fixture
def local_engine():
    engine = init_db(create_store_engine("sqlite://"))
    yield engine
    engine.dispose()


@pytest.fixture
def remote_engine():
    engine = init_remote_db(create_store_engine("sqlite://"))
    yield engine
    engine.dispose()


@pytest.fixture
def local_sessions(local_engine):
    return make_session_factory(local_engine)


@pytest.fixture
def remote_sessions(remote_engine):
    return make_session_factory(remote_engine)


@pytest.fixture
def local_repo(local_sessions):
    return FlakyLocal(local_sessions)


@pytest.fixture
def remote_repo(remote_sessions):
    return FlakyRemote(remote_sessions)


@pytest.fixture
def queue(local_sessions):
    return SyncQueue(local_sessions)


@pytest.fixture
def queued_service(local_repo, remote_repo, queue):
    return TaskService(local_repo, remote_repo, queue, TaskServiceSettings())


@pytest.fixture
def immediate_service(local_repo, remote_repo, queue):
    return TaskService(local_repo, remote_repo, queue, TaskServiceSettings(sync_on_write=True))


@pytest.fixture
def sync_settings():
    return SyncSettings(interval_sec=30, max_retries=3, drain_delay_sec=0.1, full_sync_interval_sec=0)


@pytest.fixture
def fake_loop():
    return FakeLoop()


@pytest.fixture
def sync_service(local_repo, remote_repo, queue, sync_settings, fake_loop):
    service = SyncService(local_repo, remote_repo, queue, sync_settings, loop=fake_loop)
    yield service
    service.stop()
