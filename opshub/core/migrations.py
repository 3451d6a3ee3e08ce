"""Alembic schema upgrades run by the worker at startup and by `opshub migrate`."""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from opshub.core.config import settings

logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"
# Serializes upgrades when several worker replicas start together (PostgreSQL only).
UPGRADE_LOCK_KEY = 4_020_511


class MigrationError(RuntimeError):
    pass


@dataclass(frozen=True)
class MigrationStatus:
    current_heads: tuple[str, ...]
    head_revisions: tuple[str, ...]

    @property
    def is_up_to_date(self) -> bool:
        return set(self.current_heads) == set(self.head_revisions)


def alembic_config() -> Config:
    if not ALEMBIC_INI.is_file():
        raise FileNotFoundError(f"alembic.ini not found at {ALEMBIC_INI}")
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    return config


def migration_status(engine: Engine, config: Config | None = None) -> MigrationStatus:
    script = ScriptDirectory.from_config(config or alembic_config())
    with engine.connect() as connection:
        current = MigrationContext.configure(connection).get_current_heads()
    return MigrationStatus(current_heads=tuple(current or ()), head_revisions=tuple(script.get_heads()))


@contextlib.contextmanager
def _upgrade_lock(connection: Connection):
    if connection.dialect.name != "postgresql":
        yield
        return
    connection.execute(text("SELECT pg_advisory_lock(:key)"), {"key": UPGRADE_LOCK_KEY})
    connection.commit()
    try:
        yield
    finally:
        connection.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": UPGRADE_LOCK_KEY})
        connection.commit()


def ensure_migrations(engine: Engine, auto_migrate: bool) -> MigrationStatus:
    """
    Bring the schema to head when `auto_migrate` is set.

    With auto-migrate off a stale schema is only logged; startup continues.
    """
    config = alembic_config()
    status = migration_status(engine, config)
    if status.is_up_to_date:
        return status
    if not auto_migrate:
        logger.warning(
            "Database schema is behind head (%s -> %s); AUTO_MIGRATE is off",
            ",".join(status.current_heads) or "empty",
            ",".join(status.head_revisions),
        )
        return status

    with engine.connect() as connection, _upgrade_lock(connection):
        config.attributes["connection"] = connection
        command.upgrade(config, "head")
        if connection.in_transaction():
            connection.commit()

    status = migration_status(engine, config)
    if not status.is_up_to_date:
        raise MigrationError(f"Schema still behind head after upgrade: {status.current_heads}")
    logger.info("Database schema upgraded to %s", ",".join(status.current_heads))
    return status
