"""Storage port used by the reconciliation engine.

Public API:
    Storage(db_manager) -> bundle of repositories
    ContractSpecCache(repository, max_size)
"""

from .cash_ledger import CashBalanceRepository, CashLedgerRepository
from .contract_specs import ContractSpecCache, ContractSpecRepository
from .journal import JournalRepository
from .positions import PositionRepository
from .strategies import StrategyRepository
from .transactions import TransactionRepository


class Storage:
    """All repositories over one ``DatabaseManager``."""

    def __init__(self, db_manager):
        self.db = db_manager
        self.transactions = TransactionRepository(db_manager)
        self.positions = PositionRepository(db_manager)
        self.strategies = StrategyRepository(db_manager)
        self.cash_ledger = CashLedgerRepository(db_manager)
        self.cash_balances = CashBalanceRepository(db_manager)
        self.contract_specs = ContractSpecRepository(db_manager)
        self.journal_entries = JournalRepository(db_manager)


__all__ = [
    "Storage",
    "TransactionRepository",
    "PositionRepository",
    "StrategyRepository",
    "CashLedgerRepository",
    "CashBalanceRepository",
    "ContractSpecRepository",
    "ContractSpecCache",
    "JournalRepository",
]
