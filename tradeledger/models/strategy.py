"""Strategy aggregates and their leg snapshots."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class StrategyType(Enum):
    IRON_CONDOR = "iron_condor"
    VERTICAL_SPREAD = "vertical_spread"
    STRADDLE = "straddle"
    STRANGLE = "strangle"
    BUTTERFLY = "butterfly"
    SINGLE_OPTION = "single_option"


class Direction(Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class StrategyLeg:
    """Snapshot of one constituent position at detection time."""
    position_id: str
    symbol: str
    asset_type: str
    option_type: Optional[str]
    strike_price: Optional[float]
    expiration_date: Optional[str]
    side: str
    quantity: float
    opening_price: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Strategy:
    id: Optional[str]
    user_id: str
    strategy_type: str
    symbol: str
    leg_count: int
    direction: Optional[str]
    opened_at: Optional[str]
    expiration_date: Optional[str]
    total_opening_cost: float
    legs: List[StrategyLeg] = field(default_factory=list)
    status: str = "open"
    closed_at: Optional[str] = None
    total_closing_proceeds: float = 0.0
    realized_pl: float = 0.0
    unrealized_pl: float = 0.0
    original_strategy_id: Optional[str] = None
    adjusted_from_strategy_id: Optional[str] = None
    is_adjustment: bool = False

    @property
    def position_ids(self) -> List[str]:
        return [leg.position_id for leg in self.legs]
