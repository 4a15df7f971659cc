"""
Alembic env для схемы PawMatch media (pets, conversion_log, jobs).

DSN: `alembic -x dsn=...` > POSTGRES_DSN. alembic.ini не обязателен.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from pawmatch_media.common.config import get_settings
from pawmatch_media.storage.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def _database_url() -> str:
    return context.get_x_argument(as_dictionary=True).get("dsn") or get_settings().postgres_dsn


def _configure_opts(url: str) -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        # ALTER для SQLite только через пересоздание таблицы
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    url = _database_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_opts(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = _database_url()
    engine = create_engine(url, poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(connection=connection, **_configure_opts(url))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
