"""Shared instances for the HTTP layer.

Routers receive these through ``Depends`` so tests can override them with a
temporary database.
"""

from fastapi import Header

from tradeledger.config import Settings
from tradeledger.database.db_manager import DatabaseManager
from tradeledger.pipeline.locks import UserLockRegistry
from tradeledger.pipeline.orchestrator import ReconciliationEngine
from tradeledger.storage import ContractSpecCache, Storage

DEFAULT_USER_ID = "00000000-0000-0000-0000-000000000001"

settings = Settings.from_env()
db = DatabaseManager(settings.database_url)
storage = Storage(db)
spec_cache = ContractSpecCache(storage.contract_specs, max_size=settings.contract_spec_cache_size)
lock_registry = UserLockRegistry(timeout=settings.reconcile_lock_timeout)
engine = ReconciliationEngine(storage, spec_cache=spec_cache, locks=lock_registry)


def get_storage() -> Storage:
    return storage


def get_engine() -> ReconciliationEngine:
    return engine


def get_lock_registry() -> UserLockRegistry:
    """The registry the engine serializes runs with; ledger writes share it."""
    return lock_registry


async def get_current_user_id(x_user_id: str = Header(default=DEFAULT_USER_ID)) -> str:
    """User id from the ``X-User-Id`` header (authentication happens upstream)."""
    return x_user_id
