"""
Position Ledger storage.

The ledger is owned by the engine: positions are created by the matcher,
closed through ``close_position`` and grouped by the strategy detector.
``find_open_positions`` returns candidates oldest-first, which is the FIFO
order every close relies on.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from tradeledger.database.models import Position as PositionRow
from tradeledger.errors import AmbiguousMatchError, NotFoundError
from tradeledger.models.position import (
    QUANTITY_EPSILON,
    Position,
    PositionStatus,
    allocate_close,
)

logger = logging.getLogger(__name__)

_FIELDS = (
    "id", "user_id", "asset_type", "symbol", "side", "opening_quantity",
    "current_quantity", "average_opening_price", "total_cost_basis", "opened_at",
    "option_type", "strike_price", "expiration_date", "contract_month",
    "multiplier", "total_closing_amount", "realized_pl", "unrealized_pl",
    "status", "opening_transaction_ids", "closing_transaction_ids",
    "closed_quantities", "closed_at", "strategy_id",
)


def _to_domain(row: PositionRow) -> Position:
    values = {name: getattr(row, name) for name in _FIELDS}
    values["opening_transaction_ids"] = list(values["opening_transaction_ids"] or [])
    values["closing_transaction_ids"] = list(values["closing_transaction_ids"] or [])
    values["closed_quantities"] = dict(values["closed_quantities"] or {})
    return Position(**values)


def _to_columns(position: Position) -> Dict[str, Any]:
    values = {name: getattr(position, name) for name in _FIELDS}
    values["opening_transaction_ids"] = list(position.opening_transaction_ids)
    values["closing_transaction_ids"] = list(position.closing_transaction_ids)
    values["closed_quantities"] = dict(position.closed_quantities)
    return values


class PositionRepository:
    def __init__(self, db_manager):
        self.db = db_manager

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    def create(self, position: Position) -> Position:
        if not position.id:
            position.id = str(uuid.uuid4())
        with self.db.get_session() as session:
            session.add(PositionRow(**_to_columns(position)))
        logger.debug(
            "Created position %s: %s %s %s x%s",
            position.id, position.asset_type, position.side, position.symbol, position.opening_quantity,
        )
        return position

    def get_by_id(self, position_id: str, user_id: Optional[str] = None) -> Position:
        with self.db.get_session() as session:
            query = session.query(PositionRow).filter(PositionRow.id == position_id)
            if user_id is not None:
                query = query.filter(PositionRow.user_id == user_id)
            row = query.first()
            if row is None:
                raise NotFoundError(f"Position {position_id} not found", {"position_id": position_id})
            return _to_domain(row)

    def get_all(
        self,
        user_id: str,
        status: Optional[str] = None,
        asset_type: Optional[str] = None,
        symbol: Optional[str] = None,
        strategy_id: Optional[str] = None,
        without_strategy: bool = False,
    ) -> List[Position]:
        with self.db.get_session() as session:
            query = session.query(PositionRow).filter(PositionRow.user_id == user_id)
            if status:
                query = query.filter(PositionRow.status == status)
            if asset_type:
                query = query.filter(PositionRow.asset_type == asset_type)
            if symbol:
                query = query.filter(PositionRow.symbol == symbol)
            if strategy_id:
                query = query.filter(PositionRow.strategy_id == strategy_id)
            if without_strategy:
                query = query.filter(PositionRow.strategy_id.is_(None))
            rows = query.order_by(PositionRow.opened_at, PositionRow.created_at, PositionRow.id).all()
            return [_to_domain(row) for row in rows]

    def find_open_positions(
        self,
        user_id: str,
        symbol: str,
        side: str,
        asset_type: Optional[str] = None,
        option_type: Optional[str] = None,
        strike_price: Optional[float] = None,
        expiration_date: Optional[str] = None,
        contract_month: Optional[str] = None,
    ) -> List[Position]:
        """Open positions matching the contract, oldest ``opened_at`` first.

        Raises:
            AmbiguousMatchError: an open position with no remaining quantity
                was found; FIFO cannot choose safely until it is repaired.
        """
        with self.db.get_session() as session:
            query = session.query(PositionRow).filter(
                PositionRow.user_id == user_id,
                PositionRow.symbol == symbol,
                PositionRow.side == side,
                PositionRow.status == PositionStatus.OPEN.value,
            )
            if asset_type:
                query = query.filter(PositionRow.asset_type == asset_type)
            if option_type:
                query = query.filter(PositionRow.option_type == option_type)
            if strike_price is not None:
                query = query.filter(PositionRow.strike_price == strike_price)
            if expiration_date:
                query = query.filter(PositionRow.expiration_date == expiration_date)
            if contract_month:
                query = query.filter(PositionRow.contract_month == contract_month)
            rows = query.order_by(PositionRow.opened_at, PositionRow.created_at, PositionRow.id).all()
            positions = [_to_domain(row) for row in rows]

        empty = [p.id for p in positions if p.current_quantity <= QUANTITY_EPSILON]
        if empty:
            raise AmbiguousMatchError(
                f"Open positions with zero quantity for {symbol} {side}: {empty}",
                {"user_id": user_id, "symbol": symbol, "position_ids": empty},
            )
        return positions

    def find_referencing_transaction(self, user_id: str, transaction_id: str) -> List[Position]:
        """Positions whose opening or closing id lists contain ``transaction_id``."""
        return [
            p for p in self.get_all(user_id)
            if transaction_id in p.opening_transaction_ids or transaction_id in p.closing_transaction_ids
        ]

    def find_by_opening_transaction(self, user_id: str, transaction_id: str) -> List[Position]:
        """Positions already opened (or averaged into) by ``transaction_id``."""
        return [p for p in self.get_all(user_id) if transaction_id in p.opening_transaction_ids]

    def find_by_closing_transaction(self, user_id: str, transaction_id: str) -> List[Position]:
        """Positions ``transaction_id`` has already closed quantity on, oldest first."""
        return [p for p in self.get_all(user_id) if transaction_id in p.closed_quantities]

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(self, position_id: str, **fields) -> Position:
        unknown = set(fields) - set(_FIELDS)
        if unknown or "id" in fields:
            raise ValueError(f"Position fields are not updatable: {sorted(unknown | ({'id'} & set(fields)))}")
        with self.db.get_session() as session:
            row = session.get(PositionRow, position_id)
            if row is None:
                raise NotFoundError(f"Position {position_id} not found", {"position_id": position_id})
            for name, value in fields.items():
                if name in ("opening_transaction_ids", "closing_transaction_ids"):
                    value = list(value)
                elif name == "closed_quantities":
                    value = dict(value)
                setattr(row, name, value)
            session.flush()
            return _to_domain(row)

    def close_position(
        self,
        position_id: str,
        quantity: float,
        closing_transaction_id: Optional[str],
        closing_amount: float,
        realized_pl: float,
        status: str = PositionStatus.CLOSED.value,
        closed_at: Optional[str] = None,
    ) -> Position:
        """Close ``quantity`` units of a position.

        Reduces quantity and cost basis proportionally, accumulates the closing
        amount and realized P&L and records the closing transaction id with the
        quantity it closed.  The terminal ``status`` is only applied when
        nothing remains open.  A closing transaction that was already applied
        to this position leaves it unchanged.
        """
        with self.db.get_session() as session:
            query = session.query(PositionRow).filter(PositionRow.id == position_id)
            if self.db.dialect == "postgresql":
                query = query.with_for_update()
            row = query.first()
            if row is None:
                raise NotFoundError(f"Position {position_id} not found", {"position_id": position_id})
            if closing_transaction_id and closing_transaction_id in (row.closed_quantities or {}):
                logger.warning(
                    "Transaction %s already closed %s of position %s; not applied again",
                    closing_transaction_id, row.closed_quantities[closing_transaction_id], position_id,
                )
                return _to_domain(row)

            allocation = allocate_close(_to_domain(row), quantity)

            row.current_quantity = allocation.new_quantity
            row.total_cost_basis = allocation.remaining_cost_basis
            row.total_closing_amount = (row.total_closing_amount or 0.0) + closing_amount
            row.realized_pl = (row.realized_pl or 0.0) + realized_pl
            if closing_transaction_id:
                row.closing_transaction_ids = list(row.closing_transaction_ids or []) + [closing_transaction_id]
                row.closed_quantities = {**(row.closed_quantities or {}), closing_transaction_id: quantity}

            if allocation.is_full_close:
                row.status = status
                row.closed_at = closed_at
                row.unrealized_pl = 0.0

            session.flush()
            closed = _to_domain(row)

        logger.debug(
            "Closed %s of position %s (basis released %.2f, realized %.2f, now %s)",
            quantity, position_id, allocation.closed_cost_basis, realized_pl, closed.status,
        )
        return closed

    def remove_transaction_reference(self, position_id: str, transaction_id: str) -> Position:
        position = self.get_by_id(position_id)
        return self.update(
            position_id,
            opening_transaction_ids=[t for t in position.opening_transaction_ids if t != transaction_id],
            closing_transaction_ids=[t for t in position.closing_transaction_ids if t != transaction_id],
            closed_quantities={t: q for t, q in position.closed_quantities.items() if t != transaction_id},
        )

    def delete(self, user_id: str, position_id: str) -> None:
        with self.db.get_session() as session:
            count = session.query(PositionRow).filter(
                PositionRow.user_id == user_id,
                PositionRow.id == position_id,
            ).delete(synchronize_session=False)
            if count == 0:
                raise NotFoundError(f"Position {position_id} not found", {"position_id": position_id})
