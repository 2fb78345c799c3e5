"""Group classification: pure functions from positions to unsaved strategies."""

from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, Tuple

from tradeledger.models.position import Position
from tradeledger.models.strategy import Strategy, StrategyType

from .adapters import build_strategy
from .constants import DETECTORS, NO_EXPIRATION
from .types import Detector

GroupKey = Tuple[str, str]


def group_positions(positions: Sequence[Position]) -> "OrderedDict[GroupKey, List[Position]]":
    """Bucket positions by (symbol, expiration), keeping first-seen order."""
    groups: "OrderedDict[GroupKey, List[Position]]" = OrderedDict()
    for position in positions:
        key = (position.symbol, position.expiration_date or NO_EXPIRATION)
        groups.setdefault(key, []).append(position)
    return groups


def match_detector(legs: Sequence[Position], detectors: Sequence[Detector] = DETECTORS) -> Optional[Detector]:
    """First detector whose leg count and shape fit, else None."""
    for detector in detectors:
        if len(legs) == detector.leg_count and detector.matches(legs):
            return detector
    return None


def classify_group(positions: Sequence[Position]) -> List[Strategy]:
    """Turn one (symbol, expiration) group into strategies.

    Option legs that form a known shape become a single multi-leg strategy.
    Everything else becomes one ``single_option`` strategy per position.
    """
    options = [p for p in positions if p.is_option]
    others = [p for p in positions if not p.is_option]

    strategies: List[Strategy] = []
    detector = match_detector(options) if options else None
    if detector is not None:
        strategies.append(build_strategy(detector.strategy_type, detector.direction(options), options))
    else:
        others = list(positions)

    for position in others:
        strategies.append(build_strategy(StrategyType.SINGLE_OPTION.value, None, [position]))
    return strategies


def classify(positions: Sequence[Position]) -> List[Strategy]:
    result: List[Strategy] = []
    for group in group_positions(positions).values():
        result.extend(classify_group(group))
    return result


def group_summary(groups: Dict[GroupKey, List[Position]]) -> str:
    return ", ".join(f"{symbol}/{exp}:{len(legs)}" for (symbol, exp), legs in groups.items())
