"""Cash balance service: recompute a user's cash position from the ledgers."""

from datetime import date
from typing import Optional

from loguru import logger

from tradeledger.models import cash as codes
from tradeledger.models.cash import CashBalance
from tradeledger.models.transaction import AssetType

_MARGIN_CODES = {codes.FUTURES_MARGIN, codes.FUTURES_MARGIN_RELEASE}


def recalculate_balance(storage, user_id: str, as_of: Optional[date] = None) -> CashBalance:
    """Sum broker cash rows and derived cash entries up to ``as_of`` and save a snapshot.

    Deposits and withdrawals count as available only once settled; before
    their settle date they are pending (but already part of total cash).
    Everything else is settled immediately.
    """
    as_of = as_of or date.today()
    cutoff = as_of.isoformat()
    balance = CashBalance(user_id=user_id, balance_date=cutoff)

    for tx in storage.transactions.get_all(user_id, asset_type=AssetType.CASH.value, end_date=f"{cutoff}T23:59:59"):
        amount = tx.amount or 0.0
        settled = bool(tx.settle_date) and tx.settle_date[:10] <= cutoff
        balance.total_cash += amount

        if tx.code in codes.DEPOSIT_CODES:
            if settled:
                balance.available_cash += amount
            else:
                balance.pending_deposits += amount
        elif tx.code in codes.WITHDRAWAL_CODES:
            if settled:
                balance.available_cash += amount
            else:
                balance.pending_withdrawals += abs(amount)
        else:
            # Interest, dividends, fees and anything else
            balance.available_cash += amount

    margin_outstanding = 0.0
    for entry in storage.cash_ledger.get_all(user_id, end_date=f"{cutoff}T23:59:59"):
        balance.total_cash += entry.amount
        balance.available_cash += entry.amount
        if entry.transaction_code in _MARGIN_CODES:
            margin_outstanding -= entry.amount
    balance.margin_used = max(margin_outstanding, 0.0)

    for name in ("total_cash", "available_cash", "pending_deposits", "pending_withdrawals", "margin_used"):
        setattr(balance, name, round(getattr(balance, name), 2))

    storage.cash_balances.save(balance)
    logger.info(
        f"Cash balance for {user_id} as of {cutoff}: total ${balance.total_cash:,.2f}, "
        f"available ${balance.available_cash:,.2f}, margin ${balance.margin_used:,.2f}"
    )
    return balance
