"""Multi-leg patterns: iron condor (4 legs) and butterfly (3 legs)."""

from typing import Sequence

from tradeledger.models.position import Position

from .patterns_single import by_strike, is_option_group

_CONDOR_SHAPE = [("put", "long"), ("put", "short"), ("call", "short"), ("call", "long")]


def is_iron_condor(legs: Sequence[Position]) -> bool:
    """Sorted by strike: long put, short put, short call, long call."""
    if len(legs) != 4 or not is_option_group(legs):
        return False
    shape = [(leg.option_type, leg.side) for leg in by_strike(legs)]
    return shape == _CONDOR_SHAPE


def is_butterfly(legs: Sequence[Position]) -> bool:
    """One option type; middle strike carries twice the equal outer quantities."""
    if len(legs) != 3 or not is_option_group(legs):
        return False
    if len({leg.option_type for leg in legs}) != 1:
        return False
    lower, middle, upper = by_strike(legs)
    if lower.current_quantity != upper.current_quantity:
        return False
    return middle.current_quantity == 2 * lower.current_quantity
