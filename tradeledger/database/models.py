"""
SQLAlchemy 2.0 declarative models for the reconciliation ledger.

Every user-scoped table carries a ``user_id`` column; scoping is explicit in
the repositories rather than applied by session events.  Dates are stored as
ISO-8601 strings (``YYYY-MM-DD`` or full timestamps) so that lexical order
matches chronological order on both SQLite and PostgreSQL.
"""

import uuid
from datetime import datetime, timezone, date as date_type
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase


def _new_id() -> str:
    return str(uuid.uuid4())


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Base class with to_dict() for JSON serialization
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    """Shared declarative base with a generic to_dict() helper."""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize all columns to a plain dict."""
        result = {}
        for col in self.__table__.columns:
            value = getattr(self, col.key)
            if isinstance(value, (datetime, date_type)):
                value = value.isoformat()
            result[col.key] = value
        return result


# ---------------------------------------------------------------------------
# Transactions (raw brokerage events)
# ---------------------------------------------------------------------------

class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=False)
    asset_type = Column(String(16), nullable=False)  # stock|option|crypto|futures|cash
    transaction_code = Column(String(16), nullable=True)
    symbol = Column(String, nullable=True)
    instrument = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    option_type = Column(String(8), nullable=True)
    strike_price = Column(Float, nullable=True)
    expiration_date = Column(String, nullable=True)
    contract_month = Column(String(8), nullable=True)
    multiplier = Column(Float, nullable=True)
    quantity = Column(Float, nullable=False, default=0)
    price = Column(Float, nullable=True)
    amount = Column(Float, nullable=False, default=0)
    fees = Column(Float, nullable=False, default=0)
    is_opening = Column(Boolean, nullable=True)
    is_long = Column(Boolean, nullable=True)
    activity_date = Column(String, nullable=False)
    process_date = Column(String, nullable=True)
    settle_date = Column(String, nullable=True)
    import_id = Column(String(36), nullable=True)
    batch_id = Column(String(36), nullable=True)
    position_id = Column(String(36), ForeignKey("positions.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(String, server_default=func.now())

    __table_args__ = (
        Index("idx_transactions_user_unmatched", "user_id", "position_id"),
        Index("idx_transactions_user_date", "user_id", "activity_date"),
        Index("idx_transactions_import", "import_id"),
    )


# ---------------------------------------------------------------------------
# Strategies and positions
# ---------------------------------------------------------------------------

class Strategy(Base):
    __tablename__ = "strategies"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=False)
    strategy_type = Column(String(32), nullable=False)
    symbol = Column(String, nullable=False)
    leg_count = Column(Integer, nullable=False, default=1)
    direction = Column(String(16), nullable=True)
    status = Column(String(16), nullable=False, default="open")
    opened_at = Column(String, nullable=True)
    expiration_date = Column(String, nullable=True)
    closed_at = Column(String, nullable=True)
    total_opening_cost = Column(Float, nullable=False, default=0)
    total_closing_proceeds = Column(Float, nullable=False, default=0)
    realized_pl = Column(Float, nullable=False, default=0)
    unrealized_pl = Column(Float, nullable=False, default=0)
    legs = Column(JSON, nullable=False, default=list)
    original_strategy_id = Column(String(36), nullable=True)
    adjusted_from_strategy_id = Column(String(36), nullable=True)
    is_adjustment = Column(Boolean, nullable=False, default=False)
    created_at = Column(String, server_default=func.now())

    __table_args__ = (
        Index("idx_strategies_user_status", "user_id", "status"),
    )


class Position(Base):
    __tablename__ = "positions"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=False)
    asset_type = Column(String(16), nullable=False)
    symbol = Column(String, nullable=False)
    option_type = Column(String(8), nullable=True)
    strike_price = Column(Float, nullable=True)
    expiration_date = Column(String, nullable=True)
    contract_month = Column(String(8), nullable=True)
    multiplier = Column(Float, nullable=False, default=1)
    side = Column(String(8), nullable=False)  # long|short
    opening_quantity = Column(Float, nullable=False)
    current_quantity = Column(Float, nullable=False)
    average_opening_price = Column(Float, nullable=False, default=0)
    total_cost_basis = Column(Float, nullable=False, default=0)
    total_closing_amount = Column(Float, nullable=False, default=0)
    realized_pl = Column(Float, nullable=False, default=0)
    unrealized_pl = Column(Float, nullable=False, default=0)
    status = Column(String(16), nullable=False, default="open")
    opening_transaction_ids = Column(JSON, nullable=False, default=list)
    closing_transaction_ids = Column(JSON, nullable=False, default=list)
    closed_quantities = Column(JSON, nullable=False, default=dict)
    opened_at = Column(String, nullable=False)
    closed_at = Column(String, nullable=True)
    strategy_id = Column(String(36), ForeignKey("strategies.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(String, default=_utc_now)  # microsecond FIFO tie-break

    __table_args__ = (
        Index("idx_positions_user_status", "user_id", "status"),
        Index("idx_positions_open_lookup", "user_id", "symbol", "side", "status", "opened_at"),
        Index("idx_positions_strategy", "strategy_id"),
    )


# ---------------------------------------------------------------------------
# Cash ledger
# ---------------------------------------------------------------------------

class CashLedgerEntry(Base):
    __tablename__ = "cash_ledger_entries"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=False)
    transaction_code = Column(String(32), nullable=False)
    amount = Column(Float, nullable=False)
    description = Column(Text, nullable=True)
    symbol = Column(String, nullable=True)
    transaction_id = Column(String(36), nullable=True)
    linked_transaction_ids = Column(JSON, nullable=False, default=list)
    activity_date = Column(String, nullable=False)
    process_date = Column(String, nullable=True)
    settle_date = Column(String, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(String, server_default=func.now())

    __table_args__ = (
        Index("idx_cash_entries_user_date", "user_id", "activity_date"),
        Index("idx_cash_entries_transaction", "transaction_id"),
    )


class CashBalance(Base):
    __tablename__ = "cash_balances"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=False)
    balance_date = Column(String, nullable=False)
    total_cash = Column(Float, nullable=False, default=0)
    available_cash = Column(Float, nullable=False, default=0)
    pending_deposits = Column(Float, nullable=False, default=0)
    pending_withdrawals = Column(Float, nullable=False, default=0)
    margin_used = Column(Float, nullable=False, default=0)
    created_at = Column(String, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "balance_date", name="uq_cash_balance_user_date"),
    )


# ---------------------------------------------------------------------------
# Futures contract specifications
# ---------------------------------------------------------------------------

class FuturesContractSpec(Base):
    __tablename__ = "futures_contract_specs"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=True)  # NULL = shared default
    symbol = Column(String(8), nullable=False)
    name = Column(String, nullable=True)
    exchange = Column(String(16), nullable=True)
    multiplier = Column(Float, nullable=False)
    tick_size = Column(Float, nullable=False)
    tick_value = Column(Float, nullable=False)
    initial_margin = Column(Float, nullable=True)
    maintenance_margin = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("user_id", "symbol", name="uq_contract_spec_user_symbol"),
    )


# ---------------------------------------------------------------------------
# Journal references
# ---------------------------------------------------------------------------

class JournalEntry(Base):
    __tablename__ = "journal_entries"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=False)
    title = Column(String, nullable=True)
    transaction_ids = Column(JSON, nullable=False, default=list)
    position_ids = Column(JSON, nullable=False, default=list)
    strategy_id = Column(String(36), nullable=True)
    created_at = Column(String, server_default=func.now())
