"""
Alembic environment for the notes store.

The database URL is built from NOTES_DATABASE_* environment variables, the same
settings the service reads, and ``target_metadata`` is the notes model
metadata so ``--autogenerate`` can diff it against the live schema.
"""

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine

from notes_app.config import DatabaseSettings
from notes_app.models import Base

config = context.config

# Interpret the config file for Python logging (if present).
if config.config_file_name and os.path.exists(config.config_file_name):
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _get_url() -> str:
    """Get the database URL from ``sqlalchemy.url`` in alembic.ini, falling back to
    the NOTES_DATABASE_* environment variables."""
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url
    return DatabaseSettings().get_url()


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (emit SQL without connecting)."""
    context.configure(
        url=_get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live database connection."""
    connectable = create_engine(_get_url())

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
