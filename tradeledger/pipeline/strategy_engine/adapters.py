"""Position -> Strategy adapters."""

from dataclasses import replace
from typing import List, Optional, Sequence

from tradeledger.models.position import Position
from tradeledger.models.strategy import Strategy, StrategyLeg


def positions_to_legs(positions: Sequence[Position]) -> List[StrategyLeg]:
    """Snapshot each position as a strategy leg."""
    return [
        StrategyLeg(
            position_id=p.id,
            symbol=p.symbol,
            asset_type=p.asset_type,
            option_type=p.option_type,
            strike_price=p.strike_price,
            expiration_date=p.expiration_date,
            side=p.side,
            quantity=p.current_quantity,
            opening_price=p.average_opening_price,
        )
        for p in positions
    ]


def refresh_leg(legs: Sequence[StrategyLeg], position: Position) -> List[StrategyLeg]:
    """Re-snapshot the leg for ``position`` after its opening figures grew."""
    return [
        replace(leg, quantity=position.current_quantity, opening_price=position.average_opening_price)
        if leg.position_id == position.id else leg
        for leg in legs
    ]


def build_strategy(strategy_type: str, direction: Optional[str], positions: Sequence[Position]) -> Strategy:
    """Aggregate positions into an (unsaved) open Strategy.

    opened_at is the earliest leg open; expiration is the first leg's.
    """
    expirations = [p.expiration_date for p in positions if p.expiration_date]
    return Strategy(
        id=None,
        user_id=positions[0].user_id,
        strategy_type=strategy_type,
        symbol=positions[0].symbol,
        leg_count=len(positions),
        direction=direction,
        opened_at=min(p.opened_at for p in positions),
        expiration_date=expirations[0] if expirations else None,
        total_opening_cost=sum(p.total_cost_basis for p in positions),
        legs=positions_to_legs(positions),
    )
