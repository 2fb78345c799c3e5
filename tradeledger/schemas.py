"""Pydantic request/response models for the reconciliation API."""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel


class ReconcileRequest(BaseModel):
    import_id: Optional[str] = None
    as_of: Optional[date] = None


class MatchSummary(BaseModel):
    positions_created: int
    positions_updated: int
    unmatched_count: int
    errors: List[str] = []


class ReconcileResponse(BaseModel):
    matching: MatchSummary
    assignments_applied: int
    positions_expired: int
    strategies_created: int
    positions_grouped: int
    strategies_closed: int
    cash_entries_created: int
    total_cash: Optional[float] = None


class PositionOut(BaseModel):
    id: str
    asset_type: str
    symbol: str
    side: str
    option_type: Optional[str] = None
    strike_price: Optional[float] = None
    expiration_date: Optional[str] = None
    contract_month: Optional[str] = None
    opening_quantity: float
    current_quantity: float
    average_opening_price: float
    total_cost_basis: float
    total_closing_amount: float
    realized_pl: float
    unrealized_pl: float
    status: str
    opened_at: str
    closed_at: Optional[str] = None
    strategy_id: Optional[str] = None


class StrategyLegOut(BaseModel):
    position_id: str
    option_type: Optional[str] = None
    strike_price: Optional[float] = None
    expiration_date: Optional[str] = None
    side: str
    quantity: float
    opening_price: float


class StrategyOut(BaseModel):
    id: str
    strategy_type: str
    symbol: str
    leg_count: int
    direction: Optional[str] = None
    status: str
    opened_at: Optional[str] = None
    expiration_date: Optional[str] = None
    closed_at: Optional[str] = None
    total_opening_cost: float
    total_closing_proceeds: float
    realized_pl: float
    legs: List[StrategyLegOut] = []
    adjusted_from_strategy_id: Optional[str] = None
    original_strategy_id: Optional[str] = None


class StrategyAdjustment(BaseModel):
    adjusted_from_strategy_id: str


class CashBalanceOut(BaseModel):
    balance_date: str
    total_cash: float
    available_cash: float
    pending_deposits: float
    pending_withdrawals: float
    margin_used: float


class CleanupResponse(BaseModel):
    transactions_deleted: int = 0
    positions_deleted: List[str] = []
    positions_updated: List[str] = []
    strategies_deleted: int = 0
    journal_entries_deleted: int = 0
    cash_entries_deleted: int = 0
