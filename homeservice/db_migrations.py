from __future__ import annotations

from pathlib import Path
from typing import List

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from flask import Flask
from sqlalchemy import create_engine, inspect
from sqlalchemy.pool import NullPool

from homeservice.db import TABLE_NAMES


PROJECT_ROOT = Path(__file__).resolve().parents[1]


def to_sqlalchemy_url(db_path: str) -> str:
    """Translate a ``DB_PATH``/``DATABASE_URL`` value into a SQLAlchemy URL.

    Accepts the same values as ``homeservice.db.connect_database``: anything starting
    with ``postgres`` is a PostgreSQL DSN, everything else is a SQLite file path.
    """
    raw = (db_path or "").strip()
    if not raw:
        raise RuntimeError("DB_PATH is not set; cannot run migrations.")
    if raw.startswith("postgres://"):
        return "postgresql://" + raw[len("postgres://") :]
    if raw.startswith(("postgresql", "sqlite:")):
        return raw
    return f"sqlite:///{Path(raw).expanduser().resolve().as_posix()}"


def build_alembic_config(db_path: str) -> AlembicConfig:
    alembic_ini = PROJECT_ROOT / "alembic.ini"
    if not alembic_ini.exists():
        raise RuntimeError("alembic.ini not found in the project root.")

    alembic_cfg = AlembicConfig(str(alembic_ini))
    alembic_cfg.set_main_option("script_location", (PROJECT_ROOT / "migrations").as_posix())
    alembic_cfg.set_main_option("sqlalchemy.url", to_sqlalchemy_url(db_path))
    return alembic_cfg


def missing_tables(db_path: str) -> List[str]:
    engine = create_engine(to_sqlalchemy_url(db_path), poolclass=NullPool)
    try:
        existing = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    return [table for table in TABLE_NAMES if table not in existing]


def schema_revision(db_path: str) -> tuple:
    """Return ``(current, head)`` revision ids for the configured database."""
    script = ScriptDirectory.from_config(build_alembic_config(db_path))
    engine = create_engine(to_sqlalchemy_url(db_path), poolclass=NullPool)
    try:
        with engine.connect() as connection:
            current = MigrationContext.configure(connection).get_current_revision()
    finally:
        engine.dispose()
    return current, script.get_current_head()


def _verify_tables(db_path: str) -> None:
    missing = missing_tables(db_path)
    if missing:
        raise click.ClickException(f"Schema is incomplete, missing tables: {', '.join(missing)}.")


def register_db_cli(app: Flask) -> None:
    @app.cli.group("db")
    def db_group() -> None:
        """Schema migrations (Alembic)."""

    @db_group.command("upgrade")
    @click.argument("revision", required=False, default="head")
    def db_upgrade(revision: str) -> None:
        db_path = app.config["DB_PATH"]
        command.upgrade(build_alembic_config(db_path), revision)
        if revision == "head":
            _verify_tables(db_path)
        click.echo(f"Upgraded to {revision}.")

    @db_group.command("downgrade")
    @click.argument("revision", required=False, default="-1")
    def db_downgrade(revision: str) -> None:
        command.downgrade(build_alembic_config(app.config["DB_PATH"]), revision)
        click.echo(f"Downgraded to {revision}.")

    @db_group.command("current")
    def db_current() -> None:
        command.current(build_alembic_config(app.config["DB_PATH"]), verbose=True)

    @db_group.command("check")
    def db_check() -> None:
        """Fail unless the database is at head and every table exists."""
        db_path = app.config["DB_PATH"]
        current, head = schema_revision(db_path)
        if current != head:
            raise click.ClickException(f"Database is at {current or 'base'}, expected {head}. Run `flask db upgrade`.")
        _verify_tables(db_path)
        click.echo(f"Schema at {head} with {len(TABLE_NAMES)} tables.")
