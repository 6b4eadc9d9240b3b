"""Named schema migrations for the task stores."""

from __future__ import annotations

import logging
from typing import Callable, List, Tuple

from sqlalchemy import text

from datetime_utils import to_iso, utc_now
from models.sync_operation import SyncOperation
from models.task import Task


logger = logging.getLogger("tasksync.migrations")


def _table_exists(conn, table: str) -> bool:
    result = conn.execute(
        text("SELECT name FROM sqlite_master WHERE type='table' AND name=:name"),
        {"name": table},
    )
    return result.first() is not None


def _column_exists(conn, table: str, column: str) -> bool:
    result = conn.execute(text(f"PRAGMA table_info('{table}')"))
    return any(row[1] == column for row in result)


def ensure_migrations_table(conn) -> None:
    conn.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                applied_at TEXT NOT NULL
            )
            """
        )
    )


def initial_schema(conn) -> None:
    Task.__table__.create(conn, checkfirst=True)
    # Stores created before name_key existed
    if not _column_exists(conn, "task", "name_key"):
        conn.execute(text("ALTER TABLE task ADD COLUMN name_key TEXT NOT NULL DEFAULT ''"))
        conn.execute(text("UPDATE task SET name_key = lower(trim(name))"))
    if not _column_exists(conn, "task", "sync_error"):
        conn.execute(text("ALTER TABLE task ADD COLUMN sync_error TEXT"))


def sync_queue(conn) -> None:
    SyncOperation.__table__.create(conn, checkfirst=True)


def indexes(conn) -> None:
    conn.execute(
        text("CREATE INDEX IF NOT EXISTS ix_task_owner_deleted ON task (owner_id, deleted_at)")
    )
    conn.execute(
        text("CREATE INDEX IF NOT EXISTS ix_task_owner_name_key ON task (owner_id, name_key)")
    )
    conn.execute(
        text("CREATE INDEX IF NOT EXISTS ix_syncoperation_task_type ON syncoperation (task_id, op_type)")
    )


MIGRATIONS: List[Tuple[str, Callable]] = [
    ("001_initial_schema", initial_schema),
    ("002_sync_queue", sync_queue),
    ("003_indexes", indexes),
]


def applied_migrations(conn) -> List[str]:
    if not _table_exists(conn, "migrations"):
        return []
    rows = conn.execute(text("SELECT name FROM migrations ORDER BY id ASC"))
    return [row[0] for row in rows]


def run_all(engine) -> List[str]:
    """Apply pending local-store migrations; returns the names applied now."""

    applied_now: List[str] = []
    with engine.begin() as conn:
        ensure_migrations_table(conn)
        done = set(applied_migrations(conn))
        for name, migrate in MIGRATIONS:
            if name in done:
                continue
            logger.info("Applying migration: %s", name)
            migrate(conn)
            conn.execute(
                text("INSERT INTO migrations (name, applied_at) VALUES (:name, :applied_at)"),
                {"name": name, "applied_at": to_iso(utc_now())},
            )
            applied_now.append(name)
    return applied_now


def run_remote(engine) -> None:
    """The remote store holds tasks only; it has no operation queue."""

    with engine.begin() as conn:
        Task.__table__.create(conn, checkfirst=True)


__all__ = ["MIGRATIONS", "applied_migrations", "run_all", "run_remote"]
