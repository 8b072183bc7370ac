"""Alembic environment for QuickBill.

Migrations target ``quickbill.database.Base.metadata`` against the URL from
``QUICKBILL_DATABASE_URL``; the ``sqlalchemy.url`` in alembic.ini is ignored.
SQLite has no ALTER COLUMN, so it runs in batch mode.
"""
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from quickbill import models  # noqa: F401  register tables on Base.metadata
from quickbill.database import Base, DATABASE_URL

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

config.set_main_option("sqlalchemy.url", DATABASE_URL)


def _configure(**kwargs) -> None:
    # compare_type so Numeric precision/scale changes show up in autogenerate
    context.configure(target_metadata=Base.metadata, compare_type=True, **kwargs)


def run_migrations_offline() -> None:
    _configure(
        url=DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=DATABASE_URL.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        _configure(connection=connection, render_as_batch=connection.dialect.name == "sqlite")
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
