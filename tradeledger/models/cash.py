"""Cash ledger entries and balance snapshots."""

from dataclasses import dataclass, field
from typing import List, Optional

STOCK_BUY = "STOCK_BUY"
STOCK_SELL = "STOCK_SELL"
CRYPTO_BUY = "CRYPTO_BUY"
CRYPTO_SELL = "CRYPTO_SELL"
OPTION_BUY = "OPTION_BUY"
OPTION_SELL = "OPTION_SELL"
OPTION_BUY_CLOSE = "OPTION_BUY_CLOSE"
OPTION_SELL_CLOSE = "OPTION_SELL_CLOSE"
OPTION_MULTILEG_DEBIT = "OPTION_MULTILEG_DEBIT"
OPTION_MULTILEG_CREDIT = "OPTION_MULTILEG_CREDIT"
FUTURES_MARGIN = "FUTURES_MARGIN"
FUTURES_MARGIN_RELEASE = "FUTURES_MARGIN_RELEASE"
FUTURES_PROFIT = "FUTURES_PROFIT"
FUTURES_LOSS = "FUTURES_LOSS"
FEE = "FEE"

# Broker cash codes (asset_type = cash transactions)
DEPOSIT_CODES = {"ACH", "RTP", "DCF", "DEP"}
WITHDRAWAL_CODES = {"WD"}


@dataclass
class CashLedgerEntry:
    user_id: str
    transaction_code: str
    amount: float
    activity_date: str
    description: Optional[str] = None
    symbol: Optional[str] = None
    transaction_id: Optional[str] = None
    linked_transaction_ids: List[str] = field(default_factory=list)
    process_date: Optional[str] = None
    settle_date: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    id: Optional[str] = None


@dataclass
class CashBalance:
    user_id: str
    balance_date: str
    total_cash: float = 0.0
    available_cash: float = 0.0
    pending_deposits: float = 0.0
    pending_withdrawals: float = 0.0
    margin_used: float = 0.0
    id: Optional[str] = None
