# alembic/env.py: sync engine on psycopg / sqlite, same models as the service

from __future__ import annotations

import os
from logging.config import fileConfig
from typing import Any

from alembic import context
from sqlalchemy.pool import NullPool

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from medstock.db.base import Base, init_models  # noqa: E402
from medstock.db.engine import create_sync_engine  # noqa: E402
from medstock.db.session import _strip_quotes, normalize_sync_dsn  # noqa: E402


def get_url() -> str:
    """
    Priority:
      1. MEDSTOCK_TEST_DATABASE_URL
      2. DATABASE_URL
      3. sqlalchemy.url in alembic.ini
    """
    url = (
        os.getenv("MEDSTOCK_TEST_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.get_main_option("sqlalchemy.url")
    )
    if not url:
        raise RuntimeError(
            "Alembic cannot determine the database URL: set MEDSTOCK_TEST_DATABASE_URL / "
            "DATABASE_URL or sqlalchemy.url in alembic.ini"
        )
    return normalize_sync_dsn(_strip_quotes(url))


def include_object(
    obj: Any, name: str | None, type_: str, reflected: bool, compare_to: Any
) -> bool:
    # objects only present in the database never produce a drop
    if reflected and compare_to is None:
        return False
    return True


def run_migrations_offline() -> None:
    """Emit SQL only."""
    init_models()
    context.configure(
        url=get_url(),
        target_metadata=Base.metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=False,
        include_object=include_object,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    init_models()
    url = get_url()
    engine = create_sync_engine(url, poolclass=NullPool)

    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=Base.metadata,
            compare_type=True,
            compare_server_default=False,
            include_object=include_object,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()

    engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
