"""
Alembic environment configuration for async migrations.

Entry point for the Alembic CLI (alembic upgrade head, etc.) and for
importable without the CLI context.
"""

from logging.config import fileConfig
import asyncio
import logging
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config
from alembic import context

# Import all models so Alembic can detect them
from leaguereg.database.db import Base, DATABASE_URL
from leaguereg.database import models  # noqa: F401

logger = logging.getLogger(__name__)

# Only available when run by Alembic CLI (not when imported programmatically)
config = None
try:
    config = context.config
    if config.config_file_name is not None:
        fileConfig(config.config_file_name)
except AttributeError:
    # Not running via Alembic CLI
    pass

# Metadata for autogenerate support
target_metadata = Base.metadata


def run_migrations_offline(alembic_cfg=None) -> None:
    """Run migrations in 'offline' mode (generates SQL without connecting).

    Args:
        alembic_cfg: Optional Alembic Config object. If not provided, uses context.config.
    """
    config_obj = alembic_cfg if alembic_cfg is not None else config
    if config_obj is None:
        raise ValueError("Alembic config is required for offline migrations")
    context.configure(
        url=config_obj.get_main_option("sqlalchemy.url") or DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    """Execute migrations using the provided connection."""
    context.configure(connection=connection, target_metadata=target_metadata)

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations(alembic_cfg=None) -> None:
    """Run migrations against DATABASE_URL with an async engine."""
    config_obj = alembic_cfg if alembic_cfg is not None else config
    if config_obj is None:
        raise ValueError("Alembic config is required for async migrations")

    configuration = config_obj.get_section(config_obj.config_ini_section) or {}
    configuration["sqlalchemy.url"] = DATABASE_URL

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
        logger.info("Migrations executed successfully")
    except Exception as e:
        logger.error(f"Error during migration execution: {e}", exc_info=True)
        raise
    finally:
        await connectable.dispose()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (called by Alembic CLI)."""
    logger.info(
        f"Migrating database: {DATABASE_URL.split('@')[1] if '@' in DATABASE_URL else 'configured'}"
    )
    asyncio.run(run_async_migrations())


if config is not None:
    if context.is_offline_mode():
        run_migrations_offline()
    else:
        run_migrations_online()
