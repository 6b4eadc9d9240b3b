from sqlalchemy import inspect, text

from storage import migrations
from storage.db import create_store_engine, init_db


def test_fresh_store_applies_every_migration():
    engine = create_store_engine("sqlite://")

    applied = migrations.run_all(engine)

    assert applied == [name for name, _ in migrations.MIGRATIONS]
    tables = set(inspect(engine).get_table_names())
    assert {"task", "syncoperation", "migrations"} <= tables


def test_migrations_run_once():
    engine = init_db(create_store_engine("sqlite://"))

    assert migrations.run_all(engine) == []
    with engine.connect() as conn:
        assert migrations.applied_migrations(conn) == [name for name, _ in migrations.MIGRATIONS]


def test_legacy_task_table_gets_name_key_backfilled():
    engine = create_store_engine("sqlite://")
    with engine.begin() as conn:
        conn.execute(
            text(
                """
                CREATE TABLE task (
                    id VARCHAR PRIMARY KEY,
                    owner_id VARCHAR NOT NULL,
                    name VARCHAR NOT NULL,
                    description VARCHAR,
                    finished BOOLEAN NOT NULL DEFAULT 0,
                    alarm_time DATETIME NOT NULL,
                    frequency VARCHAR NOT NULL,
                    alarm_interval INTEGER NOT NULL,
                    created_at DATETIME NOT NULL,
                    updated_at DATETIME NOT NULL,
                    deleted_at DATETIME,
                    version INTEGER NOT NULL,
                    sync_status VARCHAR NOT NULL
                )
                """
            )
        )
        conn.execute(
            text(
                "INSERT INTO task VALUES ('t-1', 'user-1', '  Old Task ', NULL, 0,"
                " '2024-01-01 09:00:00', 'daily', 1, '2024-01-01 09:00:00',"
                " '2024-01-01 09:00:00', NULL, 1, 'synced')"
            )
        )

    migrations.run_all(engine)

    columns = {column["name"] for column in inspect(engine).get_columns("task")}
    assert {"name_key", "sync_error"} <= columns
    with engine.connect() as conn:
        key = conn.execute(text("SELECT name_key FROM task WHERE id = 't-1'")).scalar_one()
    assert key == "old task"


def test_remote_store_has_no_queue_table():
    engine = create_store_engine("sqlite://")

    migrations.run_remote(engine)

    tables = set(inspect(engine).get_table_names())
    assert "task" in tables
    assert "syncoperation" not in tables
