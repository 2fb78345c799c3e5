"""
Alembic environment configuration for Trade Ledger.

Key settings:
- render_as_batch=True for SQLite (ALTER TABLE support)
- Reads DATABASE_URL from the environment (and .env), falls back to SQLite
- Imports the ledger models so autogenerate can detect schema changes
"""

from logging.config import fileConfig

from sqlalchemy import Boolean, Float, Integer, String, create_engine, pool

from alembic import context

from tradeledger.config import Settings
from tradeledger.database.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

_db_url = Settings.from_env().database_url
_is_sqlite = _db_url.startswith("sqlite")

# SQLite reports its storage classes; treat them as equal to the declared types
_SQLITE_EQUIVALENT_TYPES = {
    ("TEXT", String),
    ("VARCHAR", String),
    ("REAL", Float),
    ("FLOAT", Float),
    ("BOOLEAN", Boolean),
    ("INTEGER", Integer),
}


def _compare_type(context, inspected_column, metadata_column, inspected_type, metadata_type):
    for sqlite_name, sa_type in _SQLITE_EQUIVALENT_TYPES:
        if type(inspected_type).__name__.upper() == sqlite_name and isinstance(metadata_type, sa_type):
            return False
    return None


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (SQL script output)."""
    context.configure(
        url=_db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=_is_sqlite,
        compare_type=_compare_type if _is_sqlite else True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode with a live connection."""
    connect_args = {"check_same_thread": False} if _is_sqlite else {}
    connectable = create_engine(_db_url, poolclass=pool.NullPool, connect_args=connect_args)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=_is_sqlite,
            compare_type=_compare_type if _is_sqlite else True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
