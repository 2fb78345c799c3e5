"""Detector registry, evaluated in priority order (first match wins)."""

from typing import List

from tradeledger.models.strategy import Direction, StrategyType

from .patterns_combo import is_straddle, is_strangle
from .patterns_multi import is_butterfly, is_iron_condor
from .patterns_vertical import is_vertical_spread, vertical_direction
from .types import Detector

# Group key for positions without an expiration (stock, crypto)
NO_EXPIRATION = "no-expiration"


def _neutral(legs):
    return Direction.NEUTRAL.value


DETECTORS: List[Detector] = [
    Detector(StrategyType.IRON_CONDOR.value, 4, is_iron_condor, _neutral),
    Detector(StrategyType.VERTICAL_SPREAD.value, 2, is_vertical_spread, vertical_direction),
    Detector(StrategyType.STRADDLE.value, 2, is_straddle, _neutral),
    Detector(StrategyType.STRANGLE.value, 2, is_strangle, _neutral),
    Detector(StrategyType.BUTTERFLY.value, 3, is_butterfly, _neutral),
]
