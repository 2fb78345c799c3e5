"""Single-position fallback."""

from typing import Sequence

from tradeledger.models.position import Position


def is_option_group(legs: Sequence[Position]) -> bool:
    """All legs are options sharing one expiration."""
    if not legs or not all(leg.is_option for leg in legs):
        return False
    return len({leg.expiration_date for leg in legs}) == 1


def by_strike(legs: Sequence[Position]):
    """Legs sorted by strike; puts sort ahead of calls at the same strike."""
    return sorted(legs, key=lambda leg: (leg.strike_price, 0 if leg.option_type == "put" else 1))
