from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool

from homeservice.config import Config
from homeservice.db_migrations import to_sqlalchemy_url


config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# Revisions execute homeservice.db.schema_statements directly; there is no ORM metadata.
target_metadata = None


def _database_url() -> str:
    return to_sqlalchemy_url(
        config.get_main_option("sqlalchemy.url") or os.environ.get("DATABASE_URL") or Config.DB_PATH
    )


def _configure_options(url: str) -> dict:
    # SQLite cannot ALTER most constraints in place; later revisions rely on batch mode.
    return {"target_metadata": target_metadata, "render_as_batch": url.startswith("sqlite")}


def run_migrations_offline() -> None:
    url = _database_url()
    context.configure(url=url, literal_binds=True, **_configure_options(url))

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = _database_url()
    engine = create_engine(url, poolclass=NullPool)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, **_configure_options(url))
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
