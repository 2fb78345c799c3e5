"""Journal entry references.

Journal content is owned elsewhere; the engine only needs to find and delete
entries that point at transactions, positions or strategies it removes.
"""

import uuid
from typing import Iterable, List, Optional

from tradeledger.database.models import JournalEntry as JournalEntryRow


class JournalRepository:
    def __init__(self, db_manager):
        self.db = db_manager

    def create(
        self,
        user_id: str,
        title: Optional[str] = None,
        transaction_ids: Iterable[str] = (),
        position_ids: Iterable[str] = (),
        strategy_id: Optional[str] = None,
    ) -> str:
        entry_id = str(uuid.uuid4())
        with self.db.get_session() as session:
            session.add(JournalEntryRow(
                id=entry_id,
                user_id=user_id,
                title=title,
                transaction_ids=list(transaction_ids),
                position_ids=list(position_ids),
                strategy_id=strategy_id,
            ))
        return entry_id

    def find_referencing(
        self,
        user_id: str,
        transaction_ids: Iterable[str] = (),
        position_ids: Iterable[str] = (),
        strategy_ids: Iterable[str] = (),
    ) -> List[str]:
        """Ids of journal entries that reference any of the given records."""
        tx_ids, pos_ids, strat_ids = set(transaction_ids), set(position_ids), set(strategy_ids)
        with self.db.get_session() as session:
            rows = session.query(JournalEntryRow).filter(JournalEntryRow.user_id == user_id).all()
            return [
                row.id for row in rows
                if tx_ids.intersection(row.transaction_ids or [])
                or pos_ids.intersection(row.position_ids or [])
                or (row.strategy_id is not None and row.strategy_id in strat_ids)
            ]

    def delete_many(self, entry_ids: Iterable[str]) -> int:
        ids = list(entry_ids)
        if not ids:
            return 0
        with self.db.get_session() as session:
            return session.query(JournalEntryRow).filter(
                JournalEntryRow.id.in_(ids)
            ).delete(synchronize_session=False)
