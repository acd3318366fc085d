"""Alembic environment for the GEMS ledger schema.

The target database comes from ``-x url=...`` or ``DATABASE_URL`` (``.env``
is loaded first).  Online migrations go through
:func:`gembot.database.engine.create_db_engine`, so they run with the same
timeouts and SQLite transaction handling as the bot and the API.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

from alembic import context
from gembot.database.engine import create_db_engine
from gembot.database.models import Base

load_dotenv()

target_metadata = Base.metadata


def _database_url() -> str:
    url = context.get_x_argument(as_dictionary=True).get("url") or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("Set DATABASE_URL or pass -x url=... to run GEMS migrations.")
    return url


def _configure_args(url: str) -> dict:
    # SQLite cannot ALTER constraints in place; batch mode rebuilds the table
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of connecting."""
    url = _database_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_args(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = _database_url()
    engine = create_db_engine(url)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, **_configure_args(url))
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
