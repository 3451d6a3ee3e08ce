"""Alembic environment for the opshub schema."""

from logging.config import fileConfig

from sqlalchemy import create_engine, pool

from alembic import context

import opshub.db.models  # noqa: F401  (registers every table on Base.metadata)
from opshub.core.config import settings
from opshub.db.base import Base

config = context.config
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def _migrate(connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    context.configure(
        url=settings.DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()
elif config.attributes.get("connection") is not None:
    # Handed over by opshub.core.migrations while it holds the upgrade lock.
    _migrate(config.attributes["connection"])
else:
    with create_engine(settings.DATABASE_URL, poolclass=pool.NullPool).connect() as connection:
        _migrate(connection)
