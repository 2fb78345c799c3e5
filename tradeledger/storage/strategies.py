"""Strategy ledger storage."""

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import update

from tradeledger.database.models import Position as PositionRow
from tradeledger.database.models import Strategy as StrategyRow
from tradeledger.errors import AmbiguousMatchError, NotFoundError
from tradeledger.models.strategy import Strategy, StrategyLeg

logger = logging.getLogger(__name__)

_SCALAR_FIELDS = (
    "id", "user_id", "strategy_type", "symbol", "leg_count", "direction",
    "opened_at", "expiration_date", "total_opening_cost", "status", "closed_at",
    "total_closing_proceeds", "realized_pl", "unrealized_pl",
    "original_strategy_id", "adjusted_from_strategy_id", "is_adjustment",
)


def _to_domain(row: StrategyRow) -> Strategy:
    values = {name: getattr(row, name) for name in _SCALAR_FIELDS}
    values["legs"] = [StrategyLeg(**leg) for leg in (row.legs or [])]
    return Strategy(**values)


def _to_columns(strategy: Strategy) -> Dict[str, Any]:
    values = {name: getattr(strategy, name) for name in _SCALAR_FIELDS}
    values["legs"] = [leg.to_dict() for leg in strategy.legs]
    return values


class StrategyRepository:
    def __init__(self, db_manager):
        self.db = db_manager

    def create(self, strategy: Strategy) -> Strategy:
        if not strategy.id:
            strategy.id = str(uuid.uuid4())
        with self.db.get_session() as session:
            session.add(StrategyRow(**_to_columns(strategy)))
        return strategy

    def create_with_positions(self, strategy: Strategy) -> Strategy:
        """Insert a strategy and claim its leg positions in one transaction.

        Only positions still free of a strategy are claimed.  If any leg was
        claimed in the meantime nothing is written.

        Raises:
            AmbiguousMatchError: one or more legs already belong to a strategy.
        """
        if not strategy.id:
            strategy.id = str(uuid.uuid4())
        position_ids = strategy.position_ids
        with self.db.get_session() as session:
            session.add(StrategyRow(**_to_columns(strategy)))
            session.flush()
            result = session.execute(
                update(PositionRow)
                .where(
                    PositionRow.id.in_(position_ids),
                    PositionRow.user_id == strategy.user_id,
                    PositionRow.strategy_id.is_(None),
                )
                .values(strategy_id=strategy.id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != len(position_ids):
                # Raising inside the session rolls back the strategy insert too
                raise AmbiguousMatchError(
                    f"Positions already grouped; expected {len(position_ids)} free legs, "
                    f"claimed {result.rowcount}",
                    {"strategy_id": strategy.id, "position_ids": position_ids},
                )
        logger.debug(
            "Created %s strategy %s for %s with %d legs",
            strategy.strategy_type, strategy.id, strategy.symbol, len(position_ids),
        )
        return strategy

    def get_by_id(self, strategy_id: str, user_id: Optional[str] = None) -> Strategy:
        with self.db.get_session() as session:
            query = session.query(StrategyRow).filter(StrategyRow.id == strategy_id)
            if user_id is not None:
                query = query.filter(StrategyRow.user_id == user_id)
            row = query.first()
            if row is None:
                raise NotFoundError(f"Strategy {strategy_id} not found", {"strategy_id": strategy_id})
            return _to_domain(row)

    def get_all(
        self,
        user_id: str,
        status: Optional[str] = None,
        strategy_type: Optional[str] = None,
        symbol: Optional[str] = None,
    ) -> List[Strategy]:
        with self.db.get_session() as session:
            query = session.query(StrategyRow).filter(StrategyRow.user_id == user_id)
            if status:
                query = query.filter(StrategyRow.status == status)
            if strategy_type:
                query = query.filter(StrategyRow.strategy_type == strategy_type)
            if symbol:
                query = query.filter(StrategyRow.symbol == symbol)
            rows = query.order_by(StrategyRow.opened_at, StrategyRow.id).all()
            return [_to_domain(row) for row in rows]

    def update(self, strategy_id: str, **fields) -> Strategy:
        unknown = set(fields) - set(_SCALAR_FIELDS) - {"legs"}
        if unknown or "id" in fields:
            raise ValueError(f"Strategy fields are not updatable: {sorted(unknown | ({'id'} & set(fields)))}")
        with self.db.get_session() as session:
            row = session.get(StrategyRow, strategy_id)
            if row is None:
                raise NotFoundError(f"Strategy {strategy_id} not found", {"strategy_id": strategy_id})
            for name, value in fields.items():
                if name == "legs":
                    value = [leg.to_dict() for leg in value]
                setattr(row, name, value)
            session.flush()
            return _to_domain(row)

    def delete(self, user_id: str, strategy_id: str) -> None:
        with self.db.get_session() as session:
            count = session.query(StrategyRow).filter(
                StrategyRow.user_id == user_id,
                StrategyRow.id == strategy_id,
            ).delete(synchronize_session=False)
            if count == 0:
                raise NotFoundError(f"Strategy {strategy_id} not found", {"strategy_id": strategy_id})
