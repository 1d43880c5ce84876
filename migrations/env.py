from __future__ import annotations

import os
from logging.config import fileConfig
from pathlib import Path
import sys

from sqlalchemy import engine_from_config
from sqlalchemy import pool

from alembic import context

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from forum.database import Base  # isort: skip  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def _resolve_database_url() -> str | None:
    """Prefer the URL set by :func:`forum.database.build_alembic_config`.

    Running ``alembic upgrade head`` from the command line leaves
    ``sqlalchemy.url`` unset, in which case ``DATABASE_URL`` (re-encoded by
    :func:`config._rebuild_database_url`) is used.
    """

    configured = config.get_main_option("sqlalchemy.url")
    if configured:
        return configured

    from config import _rebuild_database_url

    rebuilt = _rebuild_database_url(os.getenv("DATABASE_URL"))
    if rebuilt:
        # ConfigParser treats `%` as interpolation, so `%` must be escaped.
        config.set_main_option("sqlalchemy.url", rebuilt.replace("%", "%%"))
    return rebuilt


def run_migrations_offline() -> None:
    """Emit migration SQL without connecting to the database."""
    context.configure(
        url=_resolve_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a live connection."""
    _resolve_database_url()
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
