"""Engines and sessions for the local device store and the remote store."""
from __future__ import annotations

from typing import Callable

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from storage import migrations


SessionFactory = Callable[[], Session]


def create_store_engine(url: str, *, echo: bool = False) -> Engine:
    """Build an engine; in-memory SQLite shares one connection across sessions."""

    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> SessionFactory:
    def factory() -> Session:
        return Session(engine, expire_on_commit=False)

    return factory


# ----- schema -----
def init_db(engine: Engine) -> Engine:
    migrations.run_all(engine)
    return engine


def init_remote_db(engine: Engine) -> Engine:
    migrations.run_remote(engine)
    return engine


__all__ = [
    "SessionFactory",
    "create_store_engine",
    "init_db",
    "init_remote_db",
    "make_session_factory",
]
