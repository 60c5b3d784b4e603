"""Alembic env for the ux_analyses schema. The database URL comes from pipeline config."""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlmodel import SQLModel

from ux_pipeline.core.config import get_config
from ux_pipeline.models.entities import UXAnalysis  # noqa: F401 - register ux_analyses with metadata

target_metadata = SQLModel.metadata

config = context.config
if config.config_file_name is not None and config.attributes.get("configure_logger", True):
    fileConfig(config.config_file_name)


def _configure(**kwargs) -> None:
    # JSONB vs JSON and timestamp tz changes must show up in autogenerate.
    context.configure(target_metadata=target_metadata, compare_type=True, **kwargs)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    """Emit SQL for the configured database without connecting."""
    _configure(url=get_config().database_url, literal_binds=True)


def run_migrations_online() -> None:
    """
    Run against a live database. A caller may pass an open connection through
    config.attributes["connection"]; otherwise an engine is built from database_url.
    """
    connection = config.attributes.get("connection")
    if connection is not None:
        _configure(connection=connection)
        return
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = get_config().database_url
    engine = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with engine.connect() as connection:
        _configure(connection=connection)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
