"""Cash ledger and cash balance storage."""

import logging
import uuid
from dataclasses import asdict
from typing import List, Optional, Set

from tradeledger.database.models import CashBalance as CashBalanceRow
from tradeledger.database.models import CashLedgerEntry as CashLedgerEntryRow
from tradeledger.models.cash import CashBalance, CashLedgerEntry

logger = logging.getLogger(__name__)

_ENTRY_FIELDS = tuple(CashLedgerEntry.__dataclass_fields__)
_BALANCE_FIELDS = tuple(CashBalance.__dataclass_fields__)


def _entry_from_row(row: CashLedgerEntryRow) -> CashLedgerEntry:
    values = {name: getattr(row, name) for name in _ENTRY_FIELDS}
    values["linked_transaction_ids"] = list(values["linked_transaction_ids"] or [])
    values["tags"] = list(values["tags"] or [])
    return CashLedgerEntry(**values)


class CashLedgerRepository:
    def __init__(self, db_manager):
        self.db = db_manager

    def create(self, entry: CashLedgerEntry) -> CashLedgerEntry:
        if not entry.id:
            entry.id = str(uuid.uuid4())
        if entry.transaction_id and entry.transaction_id not in entry.linked_transaction_ids:
            entry.linked_transaction_ids = [entry.transaction_id] + list(entry.linked_transaction_ids)
        with self.db.get_session() as session:
            session.add(CashLedgerEntryRow(**asdict(entry)))
        logger.debug("Cash entry %s %s %.2f", entry.id, entry.transaction_code, entry.amount)
        return entry

    def get_all(
        self,
        user_id: str,
        end_date: Optional[str] = None,
        transaction_code: Optional[str] = None,
    ) -> List[CashLedgerEntry]:
        with self.db.get_session() as session:
            query = session.query(CashLedgerEntryRow).filter(CashLedgerEntryRow.user_id == user_id)
            if end_date:
                query = query.filter(CashLedgerEntryRow.activity_date <= end_date)
            if transaction_code:
                query = query.filter(CashLedgerEntryRow.transaction_code == transaction_code)
            rows = query.order_by(CashLedgerEntryRow.activity_date, CashLedgerEntryRow.created_at).all()
            return [_entry_from_row(row) for row in rows]

    def linked_transaction_ids(self, user_id: str) -> Set[str]:
        """Every transaction id that already has cash recorded for it."""
        linked = set()
        for entry in self.get_all(user_id):
            linked.update(entry.linked_transaction_ids)
        return linked

    def delete_for_transaction(self, user_id: str, transaction_id: str) -> int:
        """Delete entries derived from a transaction.

        A multi-leg net entry is removed as a whole; its other legs become
        unlinked and are re-batched on the next cash pass.
        """
        deleted = 0
        with self.db.get_session() as session:
            rows = session.query(CashLedgerEntryRow).filter(CashLedgerEntryRow.user_id == user_id).all()
            for row in rows:
                if transaction_id in (row.linked_transaction_ids or []):
                    session.delete(row)
                    deleted += 1
        return deleted


class CashBalanceRepository:
    def __init__(self, db_manager):
        self.db = db_manager

    def save(self, balance: CashBalance) -> CashBalance:
        """Store a snapshot, replacing any existing one for the same date."""
        with self.db.get_session() as session:
            row = session.query(CashBalanceRow).filter(
                CashBalanceRow.user_id == balance.user_id,
                CashBalanceRow.balance_date == balance.balance_date,
            ).first()
            values = {k: v for k, v in asdict(balance).items() if k != "id"}
            if row is None:
                row = CashBalanceRow(id=str(uuid.uuid4()), **values)
                session.add(row)
            else:
                for name, value in values.items():
                    setattr(row, name, value)
            session.flush()
            balance.id = row.id
        return balance

    def get_current(self, user_id: str) -> Optional[CashBalance]:
        with self.db.get_session() as session:
            row = session.query(CashBalanceRow).filter(
                CashBalanceRow.user_id == user_id
            ).order_by(CashBalanceRow.balance_date.desc()).first()
            if row is None:
                return None
            return CashBalance(**{name: getattr(row, name) for name in _BALANCE_FIELDS})
