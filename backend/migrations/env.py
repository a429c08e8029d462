"""Alembic environment for the social_accounts / content_posts schema.

Migrations run synchronously, so the application's async DSN is mapped to
its sync driver first (asyncpg -> psycopg2, aiosqlite -> pysqlite). A DSN
passed as ``alembic -x db_url=...`` wins over the settings.
"""

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context

from config import get_settings
from database import Base
from models import ContentPost, SocialAccount  # noqa: F401

ASYNC_DRIVERS = {
    "+asyncpg": "+psycopg2",
    "+aiosqlite": "",
}

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def sync_url() -> str:
    url = context.get_x_argument(as_dictionary=True).get("db_url") or get_settings().database_url
    for async_driver, sync_driver in ASYNC_DRIVERS.items():
        url = url.replace(async_driver, sync_driver)
    return url


def configure_context(url: str, **kwargs) -> None:
    # SQLite cannot ALTER most constraints in place
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=url.startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL to stdout without connecting."""
    url = sync_url()
    configure_context(url, url=url, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = sync_url()
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = url
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        configure_context(url, connection=connection)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
