"""
Strategy Pattern Detector: persists strategies for ungrouped open positions.

Positions already carrying a ``strategy_id`` are never regrouped, so
re-running detection is a no-op once every open position is attached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from tradeledger.errors import ReconciliationError
from tradeledger.models.position import Position, PositionStatus
from tradeledger.models.strategy import Strategy

from .adapters import refresh_leg
from .recognizer import classify_group, group_positions, group_summary

if TYPE_CHECKING:
    from tradeledger.storage import Storage

logger = logging.getLogger(__name__)


@dataclass
class DetectionResult:
    strategies_created: int = 0
    positions_grouped: int = 0
    strategies: List[Strategy] = field(default_factory=list)
    failed_groups: int = 0


def detect_strategies(storage: "Storage", user_id: str) -> DetectionResult:
    """Group open, unattached positions into strategies.

    Each strategy and the ``strategy_id`` of its legs are written together;
    a group whose write fails is logged and skipped.
    """
    result = DetectionResult()
    positions = storage.positions.get_all(
        user_id, status=PositionStatus.OPEN.value, without_strategy=True
    )
    if not positions:
        return result

    groups = group_positions(positions)
    logger.info("Detecting strategies for %s over %d groups: %s", user_id, len(groups), group_summary(groups))

    for (symbol, expiration), group in groups.items():
        for strategy in classify_group(group):
            try:
                storage.strategies.create_with_positions(strategy)
            except ReconciliationError as exc:
                logger.warning(
                    "Could not create %s strategy for %s %s: %s",
                    strategy.strategy_type, symbol, expiration, exc.message,
                )
                result.failed_groups += 1
                continue
            result.strategies_created += 1
            result.positions_grouped += strategy.leg_count
            result.strategies.append(strategy)

    logger.info(
        "Strategy detection for %s: %d strategies, %d positions grouped",
        user_id, result.strategies_created, result.positions_grouped,
    )
    return result


def link_adjustment(
    storage: "Storage",
    user_id: str,
    strategy_id: str,
    adjusted_from_id: str,
) -> Strategy:
    """Mark ``strategy_id`` as a roll of ``adjusted_from_id``.

    ``original_strategy_id`` always points at the root of the roll chain.
    """
    previous = storage.strategies.get_by_id(adjusted_from_id, user_id=user_id)
    storage.strategies.get_by_id(strategy_id, user_id=user_id)
    root: Optional[str] = previous.original_strategy_id or previous.id
    return storage.strategies.update(
        strategy_id,
        adjusted_from_strategy_id=previous.id,
        original_strategy_id=root,
        is_adjustment=True,
    )


def extend_strategy(storage: "Storage", position: Position, added_cost: float) -> Strategy:
    """Fold an opening trade merged into ``position`` into its strategy.

    Leg snapshots are otherwise taken once, at detection.
    """
    strategy = storage.strategies.get_by_id(position.strategy_id, user_id=position.user_id)
    logger.debug("Extending strategy %s with %.2f opened on position %s", strategy.id, added_cost, position.id)
    return storage.strategies.update(
        strategy.id,
        legs=refresh_leg(strategy.legs, position),
        total_opening_cost=strategy.total_opening_cost + added_cost,
    )
