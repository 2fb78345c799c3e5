"""
Lifecycle Resolver: terminal transitions outside normal buy/sell flow.

- Assignment (OASGN) closes a short option position as ``assigned``.
- Exercise (OEXCS) closes a long option position as ``exercised``.
- Expiration (OEXP, or the calendar passing ``expiration_date``) closes an
  option position as ``expired``; the remaining basis becomes realized P&L.
- Strategies whose legs are all terminal are closed once, with the
  worst-case leg status and the summed leg P&L.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, List, Optional

from tradeledger.errors import ReconciliationError
from tradeledger.models.position import QUANTITY_EPSILON, PositionStatus, allocate_close
from tradeledger.models.strategy import Strategy
from tradeledger.models.transaction import (
    ASSIGNMENT_CODE,
    EXERCISE_CODE,
    EXPIRATION_CODE,
    AssetType,
    OptionTransaction,
)
from tradeledger.pipeline.fifo_matcher import MatchFailure, applied_closes, signed_amount

if TYPE_CHECKING:
    from tradeledger.models.position import Position
    from tradeledger.storage import Storage

logger = logging.getLogger(__name__)

__all__ = [
    "LifecycleResult",
    "process_assignments_and_exercises",
    "process_expirations",
    "reconcile_strategies",
    "strategy_terminal_status",
]

# event code -> (side of the position it closes, resulting status)
_EVENTS = {
    ASSIGNMENT_CODE: ("short", PositionStatus.ASSIGNED.value),
    EXERCISE_CODE: ("long", PositionStatus.EXERCISED.value),
    EXPIRATION_CODE: (None, PositionStatus.EXPIRED.value),
}


@dataclass
class LifecycleResult:
    positions_updated: int = 0
    unmatched_count: int = 0
    errors: List[MatchFailure] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Broker-reported events
# ---------------------------------------------------------------------------

def _apply_event(storage: "Storage", tx: OptionTransaction, result: LifecycleResult) -> None:
    side, status = _EVENTS[tx.code]
    sides = [side] if side else ["long", "short"]

    candidates: List["Position"] = []
    for candidate_side in sides:
        candidates.extend(storage.positions.find_open_positions(
            tx.user_id,
            tx.symbol,
            candidate_side,
            asset_type=AssetType.OPTION.value,
            option_type=tx.option_type,
            strike_price=tx.strike_price,
            expiration_date=tx.expiration_date,
        ))
    applied, outstanding = applied_closes(storage, tx)
    applied_ids = {p.id for p in applied}
    candidates = sorted((p for p in candidates if p.id not in applied_ids), key=lambda p: (p.opened_at, p.id))

    if not candidates and not applied:
        logger.warning("No open position for %s event %s on %s", tx.code, tx.id, tx.symbol)
        result.unmatched_count += 1
        return

    remaining = outstanding
    total_amount = signed_amount(tx) if tx.amount else 0.0
    first_position_id = applied[0].id if applied else None
    for position in candidates:
        if remaining <= QUANTITY_EPSILON:
            break
        take = min(remaining, position.current_quantity)
        allocation = allocate_close(position, take)
        amount_share = total_amount * (take / tx.abs_quantity)
        storage.positions.close_position(
            position.id,
            take,
            closing_transaction_id=tx.id,
            closing_amount=amount_share,
            realized_pl=amount_share + allocation.closed_cost_basis,
            status=status,
            closed_at=tx.activity_date,
        )
        result.positions_updated += 1
        first_position_id = first_position_id or position.id
        remaining -= take

    if remaining > QUANTITY_EPSILON:
        logger.warning(
            "%s event %s covered only %s of %s contracts",
            tx.code, tx.id, tx.abs_quantity - remaining, tx.abs_quantity,
        )
    storage.transactions.update(tx.id, position_id=first_position_id)


def _process_events(storage: "Storage", user_id: str, codes) -> LifecycleResult:
    result = LifecycleResult()
    events = storage.transactions.get_all(
        user_id, asset_type=AssetType.OPTION.value, unmatched_only=True, transaction_codes=codes
    )
    for tx in events:
        try:
            tx.validate()
            _apply_event(storage, tx, result)
        except ReconciliationError as exc:
            logger.warning("Skipping lifecycle event %s: %s", tx.id, exc.message)
            result.unmatched_count += 1
            result.errors.append(MatchFailure(tx.id, exc.message))
    return result


def process_assignments_and_exercises(storage: "Storage", user_id: str) -> LifecycleResult:
    """Apply unmatched OASGN/OEXCS transactions to their option positions."""
    result = _process_events(storage, user_id, [ASSIGNMENT_CODE, EXERCISE_CODE])
    if result.positions_updated:
        logger.info("Applied assignments/exercises to %d positions for %s", result.positions_updated, user_id)
    return result


def process_expirations(storage: "Storage", user_id: str, as_of: Optional[date] = None) -> LifecycleResult:
    """Expire option positions.

    Broker OEXP events are applied first.  Then every open option position
    whose ``expiration_date`` is before ``as_of`` (default: today) is
    expired: quantity goes to zero and the remaining cost basis is realized.
    """
    as_of = as_of or date.today()
    result = _process_events(storage, user_id, [EXPIRATION_CODE])

    cutoff = as_of.isoformat()
    for position in storage.positions.get_all(
        user_id, status=PositionStatus.OPEN.value, asset_type=AssetType.OPTION.value
    ):
        if not position.expiration_date or position.expiration_date[:10] >= cutoff:
            continue
        try:
            storage.positions.close_position(
                position.id,
                position.current_quantity,
                closing_transaction_id=None,
                closing_amount=0.0,
                realized_pl=position.total_cost_basis,
                status=PositionStatus.EXPIRED.value,
                closed_at=position.expiration_date,
            )
        except ReconciliationError as exc:
            logger.warning("Could not expire position %s: %s", position.id, exc.message)
            result.errors.append(MatchFailure(position.id, exc.message))
            continue
        result.positions_updated += 1
        logger.debug("Expired position %s (%s %s)", position.id, position.symbol, position.expiration_date)

    if result.positions_updated:
        logger.info("Expired %d option positions for %s as of %s", result.positions_updated, user_id, cutoff)
    return result


# ---------------------------------------------------------------------------
# Strategy close reconciliation
# ---------------------------------------------------------------------------

def strategy_terminal_status(leg_statuses: List[str]) -> str:
    """Worst-case label: expired > assigned (incl. exercised) > closed."""
    if PositionStatus.EXPIRED.value in leg_statuses:
        return PositionStatus.EXPIRED.value
    if PositionStatus.ASSIGNED.value in leg_statuses or PositionStatus.EXERCISED.value in leg_statuses:
        return PositionStatus.ASSIGNED.value
    return PositionStatus.CLOSED.value


def _close_strategy(storage: "Storage", strategy: Strategy) -> bool:
    legs = storage.positions.get_all(strategy.user_id, strategy_id=strategy.id)
    if not legs or not all(leg.is_terminal for leg in legs):
        return False

    closed_dates = [leg.closed_at for leg in legs if leg.closed_at]
    storage.strategies.update(
        strategy.id,
        status=strategy_terminal_status([leg.status for leg in legs]),
        realized_pl=sum(leg.realized_pl for leg in legs),
        total_closing_proceeds=sum(leg.total_closing_amount for leg in legs),
        unrealized_pl=0.0,
        closed_at=max(closed_dates) if closed_dates else None,
    )
    return True


def reconcile_strategies(storage: "Storage", user_id: str) -> int:
    """Close every open strategy whose legs have all reached a terminal status.

    Closed strategies are never revisited, so their realized P&L is the
    figure captured here.
    """
    closed = 0
    for strategy in storage.strategies.get_all(user_id, status="open"):
        if _close_strategy(storage, strategy):
            closed += 1
            logger.debug("Strategy %s (%s %s) closed", strategy.id, strategy.strategy_type, strategy.symbol)
    if closed:
        logger.info("Closed %d strategies for %s", closed, user_id)
    return closed
