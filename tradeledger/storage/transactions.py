"""Transaction store: read/write access to raw brokerage events."""

import logging
import uuid
from typing import Iterable, List, Optional

from tradeledger.database.models import Transaction as TransactionRow
from tradeledger.errors import NotFoundError
from tradeledger.models.transaction import Transaction, transaction_from_row

logger = logging.getLogger(__name__)

_UPDATABLE = {
    "position_id", "import_id", "batch_id", "description", "process_date",
    "settle_date", "fees", "transaction_code",
}


class TransactionRepository:
    def __init__(self, db_manager):
        self.db = db_manager

    def create(self, transaction: Transaction) -> Transaction:
        fields = transaction.to_fields()
        if not fields.get("id"):
            fields["id"] = str(uuid.uuid4())
        with self.db.get_session() as session:
            session.add(TransactionRow(**fields))
        transaction.id = fields["id"]
        return transaction

    def create_many(self, transactions: Iterable[Transaction]) -> List[Transaction]:
        return [self.create(tx) for tx in transactions]

    def get_by_id(self, user_id: str, transaction_id: str) -> Transaction:
        with self.db.get_session() as session:
            row = session.query(TransactionRow).filter(
                TransactionRow.user_id == user_id,
                TransactionRow.id == transaction_id,
            ).first()
            if row is None:
                raise NotFoundError(
                    f"Transaction {transaction_id} not found",
                    {"user_id": user_id, "transaction_id": transaction_id},
                )
            return transaction_from_row(row.to_dict())

    def get_all(
        self,
        user_id: str,
        asset_type: Optional[str] = None,
        unmatched_only: bool = False,
        import_id: Optional[str] = None,
        transaction_codes: Optional[Iterable[str]] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[Transaction]:
        """All transactions for a user in ascending activity order, filtered."""
        with self.db.get_session() as session:
            query = session.query(TransactionRow).filter(TransactionRow.user_id == user_id)
            if asset_type:
                query = query.filter(TransactionRow.asset_type == asset_type)
            if unmatched_only:
                query = query.filter(TransactionRow.position_id.is_(None))
            if import_id:
                query = query.filter(TransactionRow.import_id == import_id)
            if transaction_codes:
                query = query.filter(TransactionRow.transaction_code.in_(list(transaction_codes)))
            if start_date:
                query = query.filter(TransactionRow.activity_date >= start_date)
            if end_date:
                query = query.filter(TransactionRow.activity_date <= end_date)
            rows = query.order_by(TransactionRow.activity_date, TransactionRow.id).all()
            return [transaction_from_row(row.to_dict()) for row in rows]

    def get_by_import_id(self, user_id: str, import_id: str) -> List[Transaction]:
        return self.get_all(user_id, import_id=import_id)

    def update(self, transaction_id: str, **fields) -> None:
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Transaction fields are not updatable: {sorted(unknown)}")
        with self.db.get_session() as session:
            count = session.query(TransactionRow).filter(
                TransactionRow.id == transaction_id
            ).update(fields, synchronize_session=False)
            if count == 0:
                raise NotFoundError(
                    f"Transaction {transaction_id} not found", {"transaction_id": transaction_id}
                )

    def update_many(self, transaction_ids: Iterable[str], **fields) -> int:
        ids = list(transaction_ids)
        if not ids:
            return 0
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Transaction fields are not updatable: {sorted(unknown)}")
        with self.db.get_session() as session:
            count = session.query(TransactionRow).filter(
                TransactionRow.id.in_(ids)
            ).update(fields, synchronize_session=False)
        logger.debug("Updated %d transactions with %s", count, sorted(fields))
        return count

    def unlink_position(self, position_id: str) -> int:
        """Clear ``position_id`` on every transaction pointing at a position."""
        with self.db.get_session() as session:
            return session.query(TransactionRow).filter(
                TransactionRow.position_id == position_id
            ).update({"position_id": None}, synchronize_session=False)

    def delete(self, user_id: str, transaction_id: str) -> None:
        with self.db.get_session() as session:
            count = session.query(TransactionRow).filter(
                TransactionRow.user_id == user_id,
                TransactionRow.id == transaction_id,
            ).delete(synchronize_session=False)
            if count == 0:
                raise NotFoundError(
                    f"Transaction {transaction_id} not found",
                    {"user_id": user_id, "transaction_id": transaction_id},
                )
