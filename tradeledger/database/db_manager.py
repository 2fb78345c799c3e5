"""
Database manager: owns one engine and its session factory.

Pass a ``DatabaseManager`` to the storage repositories; nothing in the
package reaches for a process-wide engine.
"""

import logging
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.orm import Session, sessionmaker

from tradeledger.database.engine import DEFAULT_DATABASE_URL, build_engine, dialect_for
from tradeledger.database.models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    def __init__(self, database_url: Optional[str] = None, echo: bool = False):
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.dialect = dialect_for(self.database_url)
        self.engine = build_engine(self.database_url, echo=echo)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._initialized = False

    def ensure_initialized(self):
        """Ensure tables exist (for standalone scripts)."""
        if not self._initialized:
            self.initialize_database()

    def initialize_database(self):
        """Create all tables that do not exist yet.

        Production schemas are managed by Alembic; this is the fast path for
        SQLite files, tests and first runs.
        """
        start_time = time.time()
        logger.info("Starting database initialization...")
        Base.metadata.create_all(self.engine)
        self._initialized = True
        logger.info("Database initialized in %.2fs", time.time() - start_time)

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """Context manager yielding a SQLAlchemy Session.

        Commits on clean exit, rolls back on exception.
        """
        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self):
        self.engine.dispose()
