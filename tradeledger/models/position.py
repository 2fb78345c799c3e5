"""
Position records and the close arithmetic shared by every asset class.

A Position is a continuously held exposure in one symbol/contract/side.
``allocate_close`` is the only place that splits cost basis on a close, so
that cost basis is conserved across any number of partial closes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from tradeledger.errors import InsufficientPositionError


class PositionStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"
    ASSIGNED = "assigned"
    EXERCISED = "exercised"
    EXPIRED = "expired"


TERMINAL_STATUSES = {
    PositionStatus.CLOSED.value,
    PositionStatus.ASSIGNED.value,
    PositionStatus.EXERCISED.value,
    PositionStatus.EXPIRED.value,
}

# Float quantities (crypto) leave dust after repeated partial closes
QUANTITY_EPSILON = 1e-9


@dataclass
class Position:
    """A position in the ledger.

    ``total_cost_basis`` is signed: negative means a net debit was paid to
    open, positive means a net credit was received.
    """
    id: Optional[str]
    user_id: str
    asset_type: str
    symbol: str
    side: str                       # "long" or "short"
    opening_quantity: float
    current_quantity: float
    average_opening_price: float
    total_cost_basis: float
    opened_at: str
    option_type: Optional[str] = None
    strike_price: Optional[float] = None
    expiration_date: Optional[str] = None
    contract_month: Optional[str] = None
    multiplier: float = 1.0
    total_closing_amount: float = 0.0
    realized_pl: float = 0.0
    unrealized_pl: float = 0.0
    status: str = PositionStatus.OPEN.value
    opening_transaction_ids: List[str] = field(default_factory=list)
    closing_transaction_ids: List[str] = field(default_factory=list)
    # closing transaction id -> quantity it closed here
    closed_quantities: Dict[str, float] = field(default_factory=dict)
    closed_at: Optional[str] = None
    strategy_id: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN.value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_long(self) -> bool:
        return self.side == "long"

    @property
    def is_option(self) -> bool:
        return self.asset_type == "option"


@dataclass(frozen=True)
class CloseAllocation:
    """Result of splitting a position for a close of ``quantity``."""
    quantity: float
    closed_cost_basis: float
    remaining_cost_basis: float
    new_quantity: float

    @property
    def is_full_close(self) -> bool:
        return self.new_quantity <= QUANTITY_EPSILON


def allocate_close(position: Position, quantity: float) -> CloseAllocation:
    """Split ``position``'s cost basis for closing ``quantity`` units.

    closedCostBasis = (total_cost_basis / current_quantity) * quantity

    Raises:
        InsufficientPositionError: quantity exceeds what is still open.
    """
    if quantity <= 0:
        raise ValueError(f"Close quantity must be positive, got {quantity}")
    if quantity > position.current_quantity + QUANTITY_EPSILON:
        raise InsufficientPositionError(
            f"Cannot close {quantity} of position {position.id}: only {position.current_quantity} open",
            {"position_id": position.id, "requested": quantity, "open": position.current_quantity},
        )

    new_quantity = position.current_quantity - quantity
    if new_quantity <= QUANTITY_EPSILON:
        # Full close takes whatever basis is left, so no rounding residue survives
        return CloseAllocation(quantity, position.total_cost_basis, 0.0, 0.0)

    closed = (position.total_cost_basis / position.current_quantity) * quantity
    return CloseAllocation(quantity, closed, position.total_cost_basis - closed, new_quantity)
