"""Schema provisioning through Alembic migrations."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from forum.models import db

# Exposed for Alembic's ``env.py`` autogenerate support.
Base = db.Model

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _escape_alembic_url(rendered_url: str) -> str:
    """Escape ``%`` so Alembic's ConfigParser treats URL-encoded values literally."""

    return rendered_url.replace("%", "%%")


def build_alembic_config(active_engine: Engine) -> AlembicConfig:
    """Return an Alembic config pointing at ``migrations/`` and ``active_engine``.

    Paths resolve relative to the repository root so the upgrade works from
    any working directory.
    """

    alembic_config_path = PROJECT_ROOT / "alembic.ini"
    if alembic_config_path.exists():
        config = AlembicConfig(str(alembic_config_path))
    else:
        config = AlembicConfig()
    config.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    rendered_url = active_engine.url.render_as_string(hide_password=False)
    config.set_main_option("sqlalchemy.url", _escape_alembic_url(rendered_url))
    return config


def ensure_database_schema(active_engine: Engine) -> None:
    """Upgrade the database bound to ``active_engine`` to the latest revision.

    Databases that already hold forum tables but no ``alembic_version`` table
    (for example, created with ``db.create_all``) are stamped at the base
    revision first so the upgrade does not try to recreate them.

    External Dependencies:
        Calls :func:`alembic.command.stamp` and :func:`alembic.command.upgrade`.
    """

    config = build_alembic_config(active_engine)

    existing_tables = [table for table in inspect(active_engine).get_table_names() if table]
    if "alembic_version" not in existing_tables and existing_tables:
        script = ScriptDirectory.from_config(config)
        base_revision = script.get_base()
        if isinstance(base_revision, tuple):  # pragma: no cover - multi-base fallback
            base_revision = base_revision[0]
        command.stamp(config, base_revision or "base")

    command.upgrade(config, "head")


__all__ = ["Base", "build_alembic_config", "ensure_database_schema"]
