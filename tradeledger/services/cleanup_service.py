"""
Cascading cleanup when a user removes a transaction, position or strategy.

Positions are owned by the engine, so removing their inputs has to repair
the ledger: id lists are stripped, empty positions are dropped, and journal
entries pointing at removed records go with them.
Callers hold the user's reconciliation lock, so a cleanup never lands in
the middle of a run.
"""

from dataclasses import dataclass, field
from typing import List

from loguru import logger

from tradeledger.services.cash_balance_service import recalculate_balance


@dataclass
class CleanupResult:
    transactions_deleted: int = 0
    positions_deleted: List[str] = field(default_factory=list)
    positions_updated: List[str] = field(default_factory=list)
    strategies_deleted: int = 0
    journal_entries_deleted: int = 0
    cash_entries_deleted: int = 0


def delete_transaction(storage, user_id: str, transaction_id: str) -> CleanupResult:
    """Delete a transaction and repair everything that referenced it.

    Raises:
        NotFoundError: the transaction does not exist for this user.
    """
    storage.transactions.get_by_id(user_id, transaction_id)
    result = CleanupResult()

    for position in storage.positions.find_referencing_transaction(user_id, transaction_id):
        updated = storage.positions.remove_transaction_reference(position.id, transaction_id)
        if not updated.opening_transaction_ids:
            storage.transactions.unlink_position(position.id)
            storage.positions.delete(user_id, position.id)
            result.positions_deleted.append(position.id)
        else:
            result.positions_updated.append(position.id)

    journal_ids = storage.journal_entries.find_referencing(
        user_id, transaction_ids=[transaction_id], position_ids=result.positions_deleted
    )
    result.journal_entries_deleted = storage.journal_entries.delete_many(journal_ids)
    result.cash_entries_deleted = storage.cash_ledger.delete_for_transaction(user_id, transaction_id)

    storage.transactions.delete(user_id, transaction_id)
    result.transactions_deleted = 1

    if result.positions_updated:
        # Remaining figures no longer include the removed trade
        logger.warning(
            f"Positions {result.positions_updated} lost transaction {transaction_id}; "
            f"their quantities need a rebuild"
        )
    recalculate_balance(storage, user_id)
    logger.info(
        f"Deleted transaction {transaction_id} for {user_id}: "
        f"{len(result.positions_deleted)} positions, {result.journal_entries_deleted} journal entries, "
        f"{result.cash_entries_deleted} cash entries removed"
    )
    return result


def delete_position(storage, user_id: str, position_id: str) -> CleanupResult:
    """Delete a position; its transactions become unmatched again."""
    storage.positions.get_by_id(position_id, user_id=user_id)
    result = CleanupResult()

    storage.transactions.unlink_position(position_id)
    journal_ids = storage.journal_entries.find_referencing(user_id, position_ids=[position_id])
    result.journal_entries_deleted = storage.journal_entries.delete_many(journal_ids)
    storage.positions.delete(user_id, position_id)
    result.positions_deleted.append(position_id)

    logger.info(f"Deleted position {position_id} for {user_id}")
    return result


def delete_strategy(storage, user_id: str, strategy_id: str) -> CleanupResult:
    """Delete a strategy together with its positions."""
    storage.strategies.get_by_id(strategy_id, user_id=user_id)
    result = CleanupResult()

    positions = storage.positions.get_all(user_id, strategy_id=strategy_id)
    for position in positions:
        storage.transactions.unlink_position(position.id)
        storage.positions.delete(user_id, position.id)
        result.positions_deleted.append(position.id)

    journal_ids = storage.journal_entries.find_referencing(
        user_id, position_ids=result.positions_deleted, strategy_ids=[strategy_id]
    )
    result.journal_entries_deleted = storage.journal_entries.delete_many(journal_ids)
    storage.strategies.delete(user_id, strategy_id)
    result.strategies_deleted = 1

    logger.info(f"Deleted strategy {strategy_id} with {len(positions)} positions for {user_id}")
    return result
