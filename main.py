"""Console utility to inspect and synchronize a device task store."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from core.logs import ROOT_LOGGER
from core.settings import DB_PATH, REMOTE
from services.container import Container, build_container
from services.errors import TaskSyncError
from storage.config import load_config, update_config
from storage.db import create_store_engine, init_db, init_remote_db, make_session_factory


def _build(args: argparse.Namespace, remote_url: str) -> Container:
    local_engine = init_db(create_store_engine(f"sqlite:///{Path(args.db).as_posix()}"))
    remote_engine = init_remote_db(create_store_engine(remote_url, echo=REMOTE.echo))
    return build_container(make_session_factory(local_engine), make_session_factory(remote_engine))


def _print(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def cmd_login(args: argparse.Namespace) -> int:
    changes = {"owner_id": args.owner_id}
    if args.remote:
        changes["remote_url"] = args.remote
    cfg = update_config(args.config, **changes)
    print(f"Signed in as {cfg.owner_id}")
    return 0


def cmd_status(container: Container, owner_id: str, args: argparse.Namespace) -> int:
    _print(
        {
            "ownerId": owner_id,
            "tasks": len(container.tasks.get_all_tasks(owner_id)),
            "pending": len(container.tasks.get_pending_tasks(owner_id)),
            "conflicts": [task.id for task in container.tasks.get_conflict_tasks(owner_id)],
            "queueSize": container.sync.get_queue_size(),
        }
    )
    return 0


def cmd_queue(container: Container, owner_id: str, args: argparse.Namespace) -> int:
    _print(
        [
            {
                "id": op.id,
                "type": op.type.value,
                "taskId": op.task_id,
                "previousVersion": op.previous_version,
                "retryCount": op.retry_count,
                "lastError": op.last_error,
            }
            for op in container.queue.get_all()
        ]
    )
    return 0


def cmd_sync(container: Container, owner_id: str, args: argparse.Namespace) -> int:
    container.sync.start(owner_id)
    try:
        result = container.sync.full_sync()
    finally:
        container.sync.stop()
    _print({**result.as_dict(), "queueSize": container.sync.get_queue_size()})
    return 1 if result.failed else 0


def cmd_resolve(container: Container, owner_id: str, args: argparse.Namespace) -> int:
    task = container.tasks.resolve_conflict(args.task_id, args.resolution)
    print(f"Task {task.id} is now {task.sync_status} at v{task.version}")
    return 0


COMMANDS = {
    "status": cmd_status,
    "queue": cmd_queue,
    "sync": cmd_sync,
    "resolve": cmd_resolve,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__ or "")
    parser.add_argument(
        "--db",
        type=Path,
        default=DB_PATH,
        help="Path to the local SQLite store (default: %(default)s)",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config.json")
    parser.add_argument("--remote", default=None, help="SQLAlchemy URL of the remote store")
    parser.add_argument("--owner", default=None, help="Owner id (default: signed-in user)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Also log to stderr")

    sub = parser.add_subparsers(dest="command", required=True)
    login = sub.add_parser("login", help="Remember the owner id and remote URL")
    login.add_argument("owner_id")
    sub.add_parser("status", help="Show task and queue counters")
    sub.add_parser("queue", help="List queued operations in order")
    sub.add_parser("sync", help="Drain the queue and reconcile with the remote store")
    resolve = sub.add_parser("resolve", help="Resolve a task in conflict")
    resolve.add_argument("task_id")
    resolve.add_argument("resolution", choices=["local", "remote"])
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.verbose:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
        logging.getLogger(ROOT_LOGGER).addHandler(handler)

    if args.command == "login":
        return cmd_login(args)

    cfg = load_config(args.config)
    owner_id = args.owner or cfg.owner_id
    remote_url = args.remote or REMOTE.url or cfg.remote_url
    if not owner_id:
        print("No owner id: run `login <owner_id>` or pass --owner", file=sys.stderr)
        return 2
    if not remote_url:
        print("No remote store: set TASKSYNC_REMOTE_URL or pass --remote", file=sys.stderr)
        return 2

    container = _build(args, remote_url)
    try:
        return COMMANDS[args.command](container, owner_id, args)
    except TaskSyncError as exc:
        logging.getLogger(ROOT_LOGGER).exception("Command %s failed", args.command)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
