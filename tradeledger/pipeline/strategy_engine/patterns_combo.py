"""Call + put combinations: straddle and strangle."""

from typing import Sequence

from tradeledger.models.position import Position

from .patterns_single import is_option_group


def _call_put_same_side(legs: Sequence[Position]) -> bool:
    if len(legs) != 2 or not is_option_group(legs):
        return False
    a, b = legs
    return {a.option_type, b.option_type} == {"call", "put"} and a.side == b.side


def is_straddle(legs: Sequence[Position]) -> bool:
    return _call_put_same_side(legs) and legs[0].strike_price == legs[1].strike_price


def is_strangle(legs: Sequence[Position]) -> bool:
    return _call_put_same_side(legs) and legs[0].strike_price != legs[1].strike_price
