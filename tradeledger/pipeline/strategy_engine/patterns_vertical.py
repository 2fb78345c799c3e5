"""Vertical spread pattern (2-leg, same expiry, same option type)."""

from typing import Optional, Sequence

from tradeledger.models.position import Position
from tradeledger.models.strategy import Direction

from .patterns_single import by_strike, is_option_group


def is_vertical_spread(legs: Sequence[Position]) -> bool:
    if len(legs) != 2 or not is_option_group(legs):
        return False
    a, b = legs
    return (
        a.option_type == b.option_type
        and a.side != b.side
        and a.strike_price != b.strike_price
    )


def _is_debit(legs: Sequence[Position]) -> bool:
    """Net debit from the combined basis; by strike order when the basis nets to zero."""
    net = sum(leg.total_cost_basis for leg in legs)
    if net:
        return net < 0
    low, high = by_strike(legs)
    # Long the lower call or the higher put costs money
    if low.option_type == "call":
        return low.is_long
    return high.is_long


def vertical_direction(legs: Sequence[Position]) -> Optional[str]:
    """Call debit = bullish, call credit = bearish, put debit = bearish, put credit = bullish."""
    debit = _is_debit(legs)
    if legs[0].option_type == "call":
        return Direction.BULLISH.value if debit else Direction.BEARISH.value
    return Direction.BEARISH.value if debit else Direction.BULLISH.value
