"""
Cash Flow Translator: derives cash-ledger entries from committed trades.

Sign convention: negative amounts are debits (cash out), positive amounts
are credits (cash in).  Each entry is written on its own; if a later entry
for the same transaction fails (e.g. no contract spec for a futures close
P&L), the entries already written stay and the error propagates.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Sequence

from tradeledger.errors import NotFoundError, UnmatchedReferenceError, ValidationFailureError
from tradeledger.models import cash as codes
from tradeledger.models.cash import CashLedgerEntry
from tradeledger.models.futures import ContractSpec, root_symbol
from tradeledger.models.transaction import (
    AssetType,
    CryptoTransaction,
    FuturesTransaction,
    OptionTransaction,
    StockTransaction,
    Transaction,
)
from tradeledger.pipeline.fifo_matcher import MatchFailure, signed_amount

if TYPE_CHECKING:
    from tradeledger.storage import ContractSpecCache, Storage

logger = logging.getLogger(__name__)

__all__ = ["CashFlowResult", "CashFlowTranslator"]


@dataclass
class CashFlowResult:
    entries_created: int = 0
    transactions_recorded: int = 0
    entries: List[CashLedgerEntry] = field(default_factory=list)
    errors: List[MatchFailure] = field(default_factory=list)


def _debit(tx: Transaction) -> float:
    return -(abs(tx.amount) + (tx.fees or 0.0))


def _credit(tx: Transaction) -> float:
    return abs(tx.amount) - (tx.fees or 0.0)


def _option_label(tx: OptionTransaction) -> str:
    return f"{tx.symbol} {tx.expiration_date} {tx.strike_price:g} {tx.option_type}"


class CashFlowTranslator:
    """Per-asset cash recording over an explicit storage port.

    Args:
        storage: Storage bundle (cash_ledger, positions, transactions).
        spec_cache: Contract spec lookups for futures margin and multiplier.
    """

    def __init__(self, storage: "Storage", spec_cache: Optional["ContractSpecCache"] = None):
        self.storage = storage
        self.spec_cache = spec_cache

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _write(
        self,
        tx: Transaction,
        code: str,
        amount: float,
        description: str,
        tags: Sequence[str],
        symbol: Optional[str] = None,
    ) -> CashLedgerEntry:
        entry = CashLedgerEntry(
            user_id=tx.user_id,
            transaction_code=code,
            amount=round(amount, 2),
            activity_date=tx.activity_date,
            process_date=tx.process_date,
            settle_date=tx.settle_date,
            description=description,
            symbol=symbol or tx.symbol,
            transaction_id=tx.id,
            tags=list(tags),
        )
        return self.storage.cash_ledger.create(entry)

    def _contract_spec(self, tx: FuturesTransaction) -> ContractSpec:
        symbol = root_symbol(tx.instrument or tx.symbol)
        spec = self.spec_cache.get(symbol, tx.user_id) if self.spec_cache is not None else None
        if spec is None:
            raise UnmatchedReferenceError(
                f"No contract spec for futures symbol {symbol}",
                {"transaction_id": tx.id, "symbol": symbol, "user_id": tx.user_id},
            )
        return spec

    # ------------------------------------------------------------------
    # Stock / crypto
    # ------------------------------------------------------------------

    def record_stock_buy(self, tx: StockTransaction) -> List[CashLedgerEntry]:
        return [self._write(
            tx, codes.STOCK_BUY, _debit(tx),
            f"Stock purchase: {tx.abs_quantity:g} shares of {tx.symbol} @ ${abs(tx.price or 0.0):,.2f}",
            ["stock", "buy"],
        )]

    def record_stock_sell(self, tx: StockTransaction) -> List[CashLedgerEntry]:
        return [self._write(
            tx, codes.STOCK_SELL, _credit(tx),
            f"Stock sale: {tx.abs_quantity:g} shares of {tx.symbol} @ ${abs(tx.price or 0.0):,.2f}",
            ["stock", "sell"],
        )]

    def record_crypto_buy(self, tx: CryptoTransaction) -> List[CashLedgerEntry]:
        return [self._write(
            tx, codes.CRYPTO_BUY, _debit(tx),
            f"Crypto purchase: {tx.abs_quantity:g} {tx.symbol} @ ${abs(tx.price or 0.0):,.2f}",
            ["crypto", "buy"],
        )]

    def record_crypto_sell(self, tx: CryptoTransaction) -> List[CashLedgerEntry]:
        return [self._write(
            tx, codes.CRYPTO_SELL, _credit(tx),
            f"Crypto sale: {tx.abs_quantity:g} {tx.symbol} @ ${abs(tx.price or 0.0):,.2f}",
            ["crypto", "sell"],
        )]

    def record_buy(self, tx: Transaction) -> List[CashLedgerEntry]:
        if isinstance(tx, StockTransaction):
            return self.record_stock_buy(tx)
        if isinstance(tx, CryptoTransaction):
            return self.record_crypto_buy(tx)
        raise ValidationFailureError(f"record_buy does not handle {tx.asset_type.value}", {"transaction_id": tx.id})

    def record_sell(self, tx: Transaction) -> List[CashLedgerEntry]:
        if isinstance(tx, StockTransaction):
            return self.record_stock_sell(tx)
        if isinstance(tx, CryptoTransaction):
            return self.record_crypto_sell(tx)
        raise ValidationFailureError(f"record_sell does not handle {tx.asset_type.value}", {"transaction_id": tx.id})

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def record_option_open(self, tx: OptionTransaction) -> List[CashLedgerEntry]:
        contracts = f"{tx.abs_quantity:g} contracts of {_option_label(tx)} @ ${abs(tx.price or 0.0):,.2f}"
        if tx.is_long:
            return [self._write(tx, codes.OPTION_BUY, _debit(tx), f"Options purchase (BTO): {contracts}",
                                ["option", "purchase", "BTO"])]
        return [self._write(tx, codes.OPTION_SELL, _credit(tx), f"Options sale (STO): {contracts}",
                            ["option", "sale", "STO"])]

    def record_option_close(self, tx: OptionTransaction) -> List[CashLedgerEntry]:
        contracts = f"{tx.abs_quantity:g} contracts of {_option_label(tx)} @ ${abs(tx.price or 0.0):,.2f}"
        if tx.is_buy:
            return [self._write(tx, codes.OPTION_BUY_CLOSE, _debit(tx), f"Options close (BTC): {contracts}",
                                ["option", "close", "BTC"])]
        return [self._write(tx, codes.OPTION_SELL_CLOSE, _credit(tx), f"Options close (STC): {contracts}",
                            ["option", "close", "STC"])]

    def record_option_batch(self, transactions: Sequence[OptionTransaction]) -> List[CashLedgerEntry]:
        """Collapse legs entered together into one net debit/credit entry.

        Raises:
            ValidationFailureError: a leg is malformed; nothing is written.
        """
        if not transactions:
            return []
        for tx in transactions:
            tx.validate()
        first = transactions[0]
        net = sum(signed_amount(tx) for tx in transactions) - sum(tx.fees or 0.0 for tx in transactions)
        code = codes.OPTION_MULTILEG_DEBIT if net < 0 else codes.OPTION_MULTILEG_CREDIT
        entry = CashLedgerEntry(
            user_id=first.user_id,
            transaction_code=code,
            amount=round(net, 2),
            activity_date=min(tx.activity_date for tx in transactions),
            process_date=first.process_date,
            settle_date=first.settle_date,
            description=f"Multi-leg options order: {len(transactions)} legs on {first.symbol}",
            symbol=first.symbol,
            transaction_id=None,
            linked_transaction_ids=[tx.id for tx in transactions],
            tags=["option", "multileg", "debit" if net < 0 else "credit"],
        )
        return [self.storage.cash_ledger.create(entry)]

    # ------------------------------------------------------------------
    # Futures
    # ------------------------------------------------------------------

    def record_futures_open(self, tx: FuturesTransaction) -> List[CashLedgerEntry]:
        """Margin reservation (debit) plus a separate fee debit."""
        spec = self._contract_spec(tx)
        entries = []
        margin = tx.abs_quantity * (spec.initial_margin or 0.0)
        if margin > 0:
            entries.append(self._write(
                tx, codes.FUTURES_MARGIN, -margin,
                f"Margin reserved: {tx.abs_quantity:g} contracts of {tx.instrument} @ ${spec.initial_margin:,.2f}",
                ["futures", "margin", "open"],
            ))
        if tx.fees:
            entries.append(self._write(
                tx, codes.FEE, -abs(tx.fees),
                f"Futures trading fees: {tx.abs_quantity:g} contracts of {tx.instrument}",
                ["futures", "fee", "open"],
            ))
        return entries

    def record_futures_close(self, tx: FuturesTransaction) -> List[CashLedgerEntry]:
        """Margin release (credit), realized P&L (credit or debit) and a fee debit."""
        spec = self._contract_spec(tx)
        entries = []
        released = tx.abs_quantity * (spec.initial_margin or 0.0)
        if released > 0:
            entries.append(self._write(
                tx, codes.FUTURES_MARGIN_RELEASE, released,
                f"Margin released: {tx.abs_quantity:g} contracts of {tx.instrument}",
                ["futures", "margin", "close"],
            ))

        if tx.position_id:
            try:
                position = self.storage.positions.get_by_id(tx.position_id, user_id=tx.user_id)
            except NotFoundError:
                logger.warning("Matched position %s for futures close %s is gone", tx.position_id, tx.id)
                position = None
            if position is not None:
                exit_price = abs(tx.price or 0.0)
                price_diff = (
                    exit_price - position.average_opening_price
                    if position.is_long
                    else position.average_opening_price - exit_price
                )
                realized = price_diff * tx.abs_quantity * spec.multiplier
                entries.append(self._write(
                    tx, codes.FUTURES_PROFIT if realized >= 0 else codes.FUTURES_LOSS, realized,
                    f"Realized P&L: {tx.abs_quantity:g} contracts of {tx.instrument} "
                    f"({'Long' if position.is_long else 'Short'})",
                    ["futures", "pnl", "close"],
                ))
        else:
            logger.warning("Futures close %s is unmatched; no P&L entry recorded", tx.id)

        if tx.fees:
            entries.append(self._write(
                tx, codes.FEE, -abs(tx.fees),
                f"Futures trading fees: {tx.abs_quantity:g} contracts of {tx.instrument}",
                ["futures", "fee", "close"],
            ))
        return entries

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def record_open(self, tx: Transaction) -> List[CashLedgerEntry]:
        if isinstance(tx, OptionTransaction):
            return self.record_option_open(tx)
        if isinstance(tx, FuturesTransaction):
            return self.record_futures_open(tx)
        raise ValidationFailureError(f"record_open does not handle {tx.asset_type.value}", {"transaction_id": tx.id})

    def record_close(self, tx: Transaction) -> List[CashLedgerEntry]:
        if isinstance(tx, OptionTransaction):
            return self.record_option_close(tx)
        if isinstance(tx, FuturesTransaction):
            return self.record_futures_close(tx)
        raise ValidationFailureError(f"record_close does not handle {tx.asset_type.value}", {"transaction_id": tx.id})

    def record_transaction(self, tx: Transaction) -> List[CashLedgerEntry]:
        """Record cash for a single committed trade; lifecycle events and cash rows record nothing.

        Raises:
            ValidationFailureError: the transaction is malformed.
        """
        if tx.asset_type is AssetType.CASH:
            return []
        tx.validate()
        if isinstance(tx, OptionTransaction):
            if tx.is_lifecycle_event:
                return []
            return self.record_open(tx) if tx.is_opening else self.record_close(tx)
        if isinstance(tx, FuturesTransaction):
            return self.record_open(tx) if tx.opens_position else self.record_close(tx)
        return self.record_buy(tx) if tx.is_buy else self.record_sell(tx)

    def record_pending(self, user_id: str) -> CashFlowResult:
        """Record cash for every trade that has none yet.

        Option legs sharing a ``batch_id`` are recorded as one net entry.
        Malformed transactions are skipped and reported in ``errors``, the
        same rows the matcher refuses; any other error propagates on the
        first failing transaction.
        """
        result = CashFlowResult()
        linked = self.storage.cash_ledger.linked_transaction_ids(user_id)
        pending = [
            tx for tx in self.storage.transactions.get_all(user_id)
            if tx.id not in linked and tx.asset_type is not AssetType.CASH
            and not (isinstance(tx, OptionTransaction) and tx.is_lifecycle_event)
        ]

        batches: "OrderedDict[str, List[OptionTransaction]]" = OrderedDict()
        singles: List[Transaction] = []
        for tx in pending:
            try:
                tx.validate()
            except ValidationFailureError as exc:
                logger.warning("No cash recorded for invalid transaction %s: %s", tx.id, exc.message)
                result.errors.append(MatchFailure(tx.id, exc.message))
                continue
            if isinstance(tx, OptionTransaction) and tx.batch_id:
                batches.setdefault(tx.batch_id, []).append(tx)
            else:
                singles.append(tx)
        for batch_id, legs in list(batches.items()):
            if len(legs) == 1:
                singles.append(legs[0])
                del batches[batch_id]

        for legs in batches.values():
            entries = self.record_option_batch(legs)
            result.entries.extend(entries)
            result.transactions_recorded += len(legs)

        for tx in sorted(singles, key=lambda t: (t.activity_date, t.id)):
            entries = self.record_transaction(tx)
            result.entries.extend(entries)
            result.transactions_recorded += 1

        result.entries_created = len(result.entries)
        if result.entries_created:
            logger.info(
                "Recorded %d cash entries for %d transactions (user %s)",
                result.entries_created, result.transactions_recorded, user_id,
            )
        return result
