import json

import pytest

import main as cli
from core.settings import RemoteSettings
from services.task_repository import RemoteTaskRepository
from storage.db import create_store_engine, init_remote_db, make_session_factory

from conftest import make_data


@pytest.fixture
def paths(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "REMOTE", RemoteSettings(url=None))
    remote_url = f"sqlite:///{(tmp_path / 'remote.db').as_posix()}"
    engine = init_remote_db(create_store_engine(remote_url))
    RemoteTaskRepository(make_session_factory(engine)).create(make_data("From web", id="r-1"))
    engine.dispose()
    return {
        "config": str(tmp_path / "config.json"),
        "db": str(tmp_path / "local.db"),
        "remote": remote_url,
    }


def run(paths, *args):
    return cli.main(["--config", paths["config"], "--db", paths["db"], *args])


def test_commands_need_an_owner(paths, capsys):
    assert run(paths, "--remote", paths["remote"], "status") == 2
    assert "login" in capsys.readouterr().err


def test_login_then_sync_and_status(paths, capsys):
    assert run(paths, "--remote", paths["remote"], "login", "user-1") == 0
    capsys.readouterr()

    assert run(paths, "sync") == 0
    result = json.loads(capsys.readouterr().out)
    assert result["imported"] == 1
    assert result["queueSize"] == 0

    assert run(paths, "status") == 0
    status = json.loads(capsys.readouterr().out)
    assert status == {"ownerId": "user-1", "tasks": 1, "pending": 0, "conflicts": [], "queueSize": 0}

    assert run(paths, "queue") == 0
    assert json.loads(capsys.readouterr().out) == []


def test_resolve_unknown_task_reports_error(paths, capsys):
    assert run(paths, "--remote", paths["remote"], "--owner", "user-1", "resolve", "missing", "remote") == 1
    assert "not found" in capsys.readouterr().err
