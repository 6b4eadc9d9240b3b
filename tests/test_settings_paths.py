from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core import settings
from storage.config import DeviceConfig, load_config, save_config, update_config


def test_linux_data_dir_with_xdg():
    env = {"XDG_DATA_HOME": "/tmp/xdg"}
    result = settings.get_default_data_dir(
        settings.APP_NAME,
        platform="linux",
        env=env,
        home=Path("/home/test"),
    )
    assert result == Path("/tmp/xdg") / settings.APP_NAME


def test_linux_data_dir_default_home():
    result = settings.get_default_data_dir(
        settings.APP_NAME,
        platform="linux",
        env={},
        home=Path("/home/test"),
    )
    assert result == Path("/home/test/.local/share") / settings.APP_NAME


def test_macos_data_dir():
    result = settings.get_default_data_dir(
        settings.APP_NAME,
        platform="darwin",
        env={},
        home=Path("/Users/test"),
    )
    expected = Path("/Users/test/Library/Application Support") / settings.APP_NAME
    assert result == expected


def test_windows_data_dir_appdata():
    env = {"APPDATA": "C:/Users/test/AppData/Roaming"}
    result = settings.get_default_data_dir(
        settings.APP_NAME,
        platform="win32",
        env=env,
        home=Path("C:/Users/test"),
    )
    expected = Path(env["APPDATA"]) / settings.APP_NAME
    assert result == expected


def test_runtime_paths_inside_data_dir():
    assert settings.DB_PATH.parent == settings.DATA_DIR
    assert settings.CONFIG_PATH.parent == settings.DATA_DIR
    assert settings.SYNC_LOG_PATH.parent == settings.LOG_DIR
    assert settings.LOGGING.path == settings.SYNC_LOG_PATH


def test_remote_url_comes_from_environment(monkeypatch):
    monkeypatch.setenv("TASKSYNC_REMOTE_URL", "postgresql://db.example/tasks")
    assert settings.RemoteSettings().url == "postgresql://db.example/tasks"

    monkeypatch.delenv("TASKSYNC_REMOTE_URL")
    assert settings.RemoteSettings().url is None


def test_default_sync_tunables():
    assert settings.TASKS.enable_sync is True
    assert settings.TASKS.sync_on_write is False
    assert settings.SYNC.max_retries == 3
    assert settings.SYNC.interval_sec == 30


def test_device_config_round_trip(tmp_path):
    path = tmp_path / "config.json"
    assert load_config(path) == DeviceConfig()

    save_config(DeviceConfig(owner_id="user-1"), path)
    cfg = update_config(path, remote_url="sqlite:///remote.db", unknown="ignored")

    assert cfg == DeviceConfig(owner_id="user-1", remote_url="sqlite:///remote.db")
    assert load_config(path) == cfg
    assert not path.with_suffix(".tmp").exists()


def test_corrupt_config_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")

    assert load_config(path) == DeviceConfig()
