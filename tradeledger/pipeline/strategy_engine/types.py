"""Data types for the strategy engine."""

from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from tradeledger.models.position import Position

Predicate = Callable[[Sequence[Position]], bool]
DirectionRule = Callable[[Sequence[Position]], Optional[str]]


@dataclass(frozen=True)
class Detector:
    """Registry entry: a fixed multi-leg shape and how to label it."""
    strategy_type: str          # StrategyType value, e.g. "iron_condor"
    leg_count: int              # Exact number of legs the shape needs
    matches: Predicate          # Pure shape test over the group's legs
    direction: DirectionRule    # "bullish", "bearish", "neutral" or None
