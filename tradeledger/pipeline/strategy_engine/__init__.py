"""Strategy Engine: multi-leg option pattern recognition over open positions.

Public API:
    detect_strategies(storage, user_id) -> DetectionResult
    classify_group(positions) -> List[Strategy]
    match_detector(legs) -> Optional[Detector]
    link_adjustment(storage, user_id, strategy_id, adjusted_from_id) -> Strategy
    extend_strategy(storage, position, added_cost) -> Strategy
"""

from .constants import DETECTORS, NO_EXPIRATION
from .detector import DetectionResult, detect_strategies, extend_strategy, link_adjustment
from .recognizer import classify, classify_group, group_positions, match_detector
from .types import Detector

__all__ = [
    "detect_strategies",
    "link_adjustment",
    "extend_strategy",
    "DetectionResult",
    "classify",
    "classify_group",
    "group_positions",
    "match_detector",
    "Detector",
    "DETECTORS",
    "NO_EXPIRATION",
]
