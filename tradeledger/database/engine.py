"""
SQLAlchemy engine factory for the reconciliation ledger.

Supports both SQLite and PostgreSQL; the dialect is selected from the URL
prefix.  Engines are returned to the caller rather than stored in module
state, so several databases can coexist in one process (tests do this).
"""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///tradeledger.db"


def dialect_for(db_url: str) -> str:
    """Return 'postgresql' or 'sqlite' for a SQLAlchemy URL."""
    return "postgresql" if db_url.startswith("postgresql") else "sqlite"


def build_engine(db_url: str = DEFAULT_DATABASE_URL, echo: bool = False) -> Engine:
    """Create a SQLAlchemy engine configured for the URL's dialect.

    Args:
        db_url: Full SQLAlchemy database URL.
        echo: Log emitted SQL (debugging only).
    """
    dialect = dialect_for(db_url)

    if dialect == "sqlite":
        engine = create_engine(
            db_url,
            echo=echo,
            connect_args={"check_same_thread": False},  # sessions cross FastAPI worker threads
        )

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    else:
        engine = create_engine(
            db_url,
            echo=echo,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
        )

    logger.info("SQLAlchemy engine created (%s): %s", dialect, db_url.split("@")[-1] if "@" in db_url else db_url)
    return engine
