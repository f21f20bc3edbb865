# Engine factories: sqlite gets check_same_thread + foreign keys, PG gets server_settings.
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

__all__ = ["create_async_engine_safe", "create_sync_engine"]


def _connect_args_for(url_str: str) -> dict[str, Any]:
    """
    Backend specific connect_args:
    - PostgreSQL(psycopg): application_name
    - SQLite: check_same_thread only, never server_settings
    """
    backend = make_url(url_str).get_backend_name()

    if backend.startswith("postgresql"):
        return {"application_name": "medstock"}

    if backend.startswith("sqlite"):
        return {"check_same_thread": False}

    return {}


def _sqlite_pragmas(dbapi_conn, _record) -> None:
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.execute("PRAGMA busy_timeout=10000")
    cur.close()


def _engine_kwargs(url_str: str, *, echo: bool, **extra: Any) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"echo": echo, **extra}
    if make_url(url_str).get_backend_name().startswith("postgresql"):
        kwargs["pool_pre_ping"] = True
    connect_args = _connect_args_for(url_str)
    if connect_args:
        kwargs["connect_args"] = connect_args
    return kwargs


def create_sync_engine(url_str: str, *, echo: bool = False, **extra: Any):
    engine = create_engine(url_str, **_engine_kwargs(url_str, echo=echo, **extra))
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _sqlite_pragmas)
    return engine


def create_async_engine_safe(url_str: str, *, echo: bool = False, **extra: Any) -> AsyncEngine:
    """Async flavour ('postgresql+psycopg' or 'sqlite+aiosqlite')."""
    engine = create_async_engine(url_str, **_engine_kwargs(url_str, echo=echo, **extra))
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _sqlite_pragmas)
    return engine
