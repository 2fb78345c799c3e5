"""
FIFO Matcher: turns unmatched transactions into Position ledger changes.

Opening trades create positions (stock buys merge into the open long
position at a weighted average price).  Closing trades consume open
positions oldest-first, releasing cost basis in proportion to the quantity
closed.  Every queue is processed per asset type in activity order.

Position writes land before the transaction is marked matched, so a crash
between the two leaves the transaction unmatched and it is picked up again
by the next run.  The replay is recognised from the ledger itself: an
opening id already on a position only relinks the transaction, and a close
resumes with whatever quantity the recorded ``closed_quantities`` leave
outstanding.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

from tradeledger.errors import InsufficientPositionError, ReconciliationError
from tradeledger.models.futures import resolve_contract_month, root_symbol
from tradeledger.models.position import (
    QUANTITY_EPSILON,
    CloseAllocation,
    Position,
    PositionStatus,
    allocate_close,
)
from tradeledger.models.transaction import (
    AssetType,
    CryptoTransaction,
    FuturesTransaction,
    OptionTransaction,
    StockTransaction,
    Transaction,
)
from tradeledger.pipeline.strategy_engine import extend_strategy

if TYPE_CHECKING:
    from tradeledger.storage import ContractSpecCache, Storage

logger = logging.getLogger(__name__)

__all__ = ["MatchFailure", "MatchResult", "applied_closes", "match_transactions", "signed_amount"]

_QUEUE_ORDER = (AssetType.STOCK, AssetType.OPTION, AssetType.CRYPTO, AssetType.FUTURES)


@dataclass
class MatchFailure:
    transaction_id: str
    error: str


@dataclass
class MatchResult:
    """Counters for one matching pass."""
    positions_created: int = 0
    positions_updated: int = 0
    unmatched_count: int = 0
    matched_transaction_ids: List[str] = field(default_factory=list)
    errors: List[MatchFailure] = field(default_factory=list)


def signed_amount(tx: Transaction) -> float:
    """Cash direction of a trade: buys are debits (negative), sells credits."""
    return -abs(tx.amount) if tx.is_buy else abs(tx.amount)


def _queue_key(tx: Transaction):
    # Openings sort ahead of closings stamped with the same time
    return (tx.activity_date, 0 if tx.opens_position else 1, tx.id)


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def match_transactions(
    storage: "Storage",
    user_id: str,
    import_id: Optional[str] = None,
    spec_cache: Optional["ContractSpecCache"] = None,
) -> MatchResult:
    """Match every unmatched trade for a user against the position ledger.

    Parameters
    ----------
    storage : Storage
        Storage port (transactions + positions are used).
    user_id : str
        Owner of the transactions.
    import_id : str, optional
        Restrict the pass to one import batch.
    spec_cache : ContractSpecCache, optional
        Source of futures multipliers; without it futures use multiplier 1.

    Returns
    -------
    MatchResult

    Raises
    ------
    InsufficientPositionError
        After the whole batch was processed, if any stock, crypto or futures
        sell asked for more than was open.  ``error.result`` holds the batch
        result.
    """
    result = MatchResult()
    queues: Dict[AssetType, List[Transaction]] = defaultdict(list)

    for tx in storage.transactions.get_all(user_id, unmatched_only=True, import_id=import_id):
        if tx.asset_type is AssetType.CASH:
            continue
        if isinstance(tx, OptionTransaction) and tx.is_lifecycle_event:
            continue  # assignment/exercise/expiration belong to the lifecycle resolver
        queues[tx.asset_type].append(tx)

    oversells: List[InsufficientPositionError] = []

    for asset_type in _QUEUE_ORDER:
        queue = sorted(queues.get(asset_type, []), key=_queue_key)
        if queue:
            logger.info("Matching %d %s transactions for user %s", len(queue), asset_type.value, user_id)
        for tx in queue:
            try:
                tx.validate()
                if tx.opens_position and _relink_open(storage, tx):
                    matched = True
                else:
                    matched = _HANDLERS[asset_type](storage, tx, result, spec_cache)
            except InsufficientPositionError as exc:
                logger.error("Oversell on transaction %s (%s): %s", tx.id, tx.symbol, exc.message)
                result.unmatched_count += 1
                result.errors.append(MatchFailure(tx.id, exc.message))
                oversells.append(exc)
                continue
            except ReconciliationError as exc:
                logger.warning("Skipping transaction %s (%s): %s", tx.id, tx.symbol, exc.message)
                result.unmatched_count += 1
                result.errors.append(MatchFailure(tx.id, exc.message))
                continue

            if matched:
                result.matched_transaction_ids.append(tx.id)
            else:
                result.unmatched_count += 1

    logger.info(
        "Matching complete for %s: %d created, %d updated, %d unmatched",
        user_id, result.positions_created, result.positions_updated, result.unmatched_count,
    )

    if oversells:
        error = oversells[0]
        error.result = result
        raise error
    return result


# ---------------------------------------------------------------------------
# Shared open / close helpers
# ---------------------------------------------------------------------------

def _relink_open(storage: "Storage", tx: Transaction) -> bool:
    """Link an opening ``tx`` whose position write already landed."""
    existing = storage.positions.find_by_opening_transaction(tx.user_id, tx.id)
    if not existing:
        return False
    logger.info("Opening transaction %s already applied to position %s; relinking", tx.id, existing[0].id)
    storage.transactions.update(tx.id, position_id=existing[0].id)
    return True


def applied_closes(storage: "Storage", tx: Transaction) -> Tuple[List[Position], float]:
    """Positions ``tx`` already closed in an interrupted run, and what is left to close."""
    applied = storage.positions.find_by_closing_transaction(tx.user_id, tx.id)
    outstanding = tx.abs_quantity - sum(p.closed_quantities[tx.id] for p in applied)
    return applied, max(outstanding, 0.0)


def _not_applied(candidates: List[Position], applied: List[Position]) -> List[Position]:
    applied_ids = {p.id for p in applied}
    return [p for p in candidates if p.id not in applied_ids]


def _open_position(
    storage: "Storage",
    tx: Transaction,
    symbol: str,
    side: str,
    multiplier: float = 1.0,
    **contract_fields,
) -> Position:
    position = Position(
        id=None,
        user_id=tx.user_id,
        asset_type=tx.asset_type.value,
        symbol=symbol,
        side=side,
        opening_quantity=tx.abs_quantity,
        current_quantity=tx.abs_quantity,
        average_opening_price=abs(tx.price or 0.0),
        total_cost_basis=signed_amount(tx),
        opened_at=tx.activity_date,
        multiplier=multiplier,
        opening_transaction_ids=[tx.id],
        **contract_fields,
    )
    storage.positions.create(position)
    storage.transactions.update(tx.id, position_id=position.id)
    return position


def _amount_pnl(position: Position, tx: Transaction, allocation: CloseAllocation, amount_share: float) -> float:
    """Closing cash plus the proportional opening basis released."""
    return amount_share + allocation.closed_cost_basis


def _futures_pnl(position: Position, tx: Transaction, allocation: CloseAllocation, amount_share: float) -> float:
    exit_price = abs(tx.price or 0.0)
    entry_price = position.average_opening_price
    price_diff = exit_price - entry_price if position.is_long else entry_price - exit_price
    return price_diff * allocation.quantity * position.multiplier


def _consume_fifo(
    storage: "Storage",
    tx: Transaction,
    candidates: List[Position],
    result: MatchResult,
    pnl: Callable[[Position, Transaction, CloseAllocation, float], float],
    applied: List[Position],
    outstanding: float,
) -> None:
    """Close ``outstanding`` units of ``tx`` against ``candidates`` (already FIFO ordered).

    The transaction's amount is shared across consumed positions in
    proportion to the quantity taken from each.  ``position_id`` on the
    transaction points at the oldest position consumed, including positions
    ``applied`` before an interrupted run stopped.
    """
    quantity = tx.abs_quantity
    total_amount = signed_amount(tx)
    remaining = outstanding
    first_position_id = applied[0].id if applied else None
    if applied:
        logger.info(
            "Resuming close %s: %s of %s already applied to %d positions",
            tx.id, quantity - outstanding, quantity, len(applied),
        )

    for position in candidates:
        if remaining <= QUANTITY_EPSILON:
            break
        take = min(remaining, position.current_quantity)
        allocation = allocate_close(position, take)
        amount_share = total_amount * (take / quantity)
        realized = pnl(position, tx, allocation, amount_share)

        storage.positions.close_position(
            position.id,
            take,
            closing_transaction_id=tx.id,
            closing_amount=amount_share,
            realized_pl=realized,
            status=PositionStatus.CLOSED.value,
            closed_at=tx.activity_date,
        )
        result.positions_updated += 1
        first_position_id = first_position_id or position.id
        remaining -= take

    storage.transactions.update(tx.id, position_id=first_position_id)


def _require_quantity(tx: Transaction, candidates: List[Position], outstanding: float) -> None:
    available = sum(p.current_quantity for p in candidates)
    if outstanding > available + QUANTITY_EPSILON:
        raise InsufficientPositionError(
            f"Cannot sell {outstanding} {tx.symbol}: only {available} open",
            {
                "transaction_id": tx.id,
                "symbol": tx.symbol,
                "requested": outstanding,
                "open": available,
            },
        )


# ---------------------------------------------------------------------------
# Per-asset handlers (return True when the transaction was matched)
# ---------------------------------------------------------------------------

def _match_option(storage: "Storage", tx: OptionTransaction, result: MatchResult, spec_cache) -> bool:
    contract = dict(
        option_type=tx.option_type,
        strike_price=tx.strike_price,
        expiration_date=tx.expiration_date,
    )
    if tx.is_opening:
        _open_position(storage, tx, tx.symbol, tx.side, multiplier=tx.multiplier, **contract)
        result.positions_created += 1
        return True

    applied, outstanding = applied_closes(storage, tx)
    candidates = _not_applied(
        storage.positions.find_open_positions(
            tx.user_id, tx.symbol, tx.side, asset_type=AssetType.OPTION.value, **contract
        ),
        applied,
    )
    if not candidates and not applied:
        logger.warning(
            "No open %s %s %s %s %s position for closing transaction %s",
            tx.side, tx.symbol, tx.option_type, tx.strike_price, tx.expiration_date, tx.id,
        )
        return False

    available = sum(p.current_quantity for p in candidates)
    if outstanding > available + QUANTITY_EPSILON:
        logger.warning(
            "Closing transaction %s wants %s contracts of %s but only %s are open; left unmatched",
            tx.id, outstanding, tx.symbol, available,
        )
        return False

    _consume_fifo(storage, tx, candidates, result, _amount_pnl, applied, outstanding)
    return True


def _match_stock(storage: "Storage", tx: StockTransaction, result: MatchResult, spec_cache) -> bool:
    open_longs = storage.positions.find_open_positions(
        tx.user_id, tx.symbol, "long", asset_type=AssetType.STOCK.value
    )

    if tx.is_buy:
        if not open_longs:
            _open_position(storage, tx, tx.symbol, "long")
            result.positions_created += 1
            return True

        # Average into the oldest open long
        position = open_longs[0]
        buy_qty = tx.abs_quantity
        old_qty = position.current_quantity
        new_avg = (old_qty * position.average_opening_price + buy_qty * abs(tx.price or 0.0)) / (old_qty + buy_qty)
        merged = storage.positions.update(
            position.id,
            opening_quantity=position.opening_quantity + buy_qty,
            current_quantity=old_qty + buy_qty,
            average_opening_price=new_avg,
            total_cost_basis=position.total_cost_basis + signed_amount(tx),
            opening_transaction_ids=position.opening_transaction_ids + [tx.id],
        )
        if merged.strategy_id:
            extend_strategy(storage, merged, signed_amount(tx))
        storage.transactions.update(tx.id, position_id=position.id)
        result.positions_updated += 1
        logger.debug("Merged buy %s into position %s: avg %.4f", tx.id, position.id, new_avg)
        return True

    applied, outstanding = applied_closes(storage, tx)
    open_longs = _not_applied(open_longs, applied)
    _require_quantity(tx, open_longs, outstanding)
    _consume_fifo(storage, tx, open_longs, result, _amount_pnl, applied, outstanding)
    return True


def _match_crypto(storage: "Storage", tx: CryptoTransaction, result: MatchResult, spec_cache) -> bool:
    if tx.opens_position:
        _open_position(storage, tx, tx.symbol, tx.side)
        result.positions_created += 1
        return True

    applied, outstanding = applied_closes(storage, tx)
    candidates = _not_applied(
        storage.positions.find_open_positions(tx.user_id, tx.symbol, tx.side, asset_type=AssetType.CRYPTO.value),
        applied,
    )
    if not candidates and not applied:
        logger.warning("No open %s position to match crypto sell %s", tx.symbol, tx.id)
        return False
    _require_quantity(tx, candidates, outstanding)
    _consume_fifo(storage, tx, candidates, result, _amount_pnl, applied, outstanding)
    return True


def _match_futures(storage: "Storage", tx: FuturesTransaction, result: MatchResult, spec_cache) -> bool:
    symbol = root_symbol(tx.instrument or tx.symbol)
    contract_month = tx.contract_month or resolve_contract_month(tx.instrument or tx.symbol, tx.description)

    if tx.opens_position:
        multiplier = 1.0
        spec = spec_cache.get(symbol, tx.user_id) if spec_cache is not None else None
        if spec is not None:
            multiplier = spec.multiplier
        else:
            logger.warning("No contract spec for %s; opening %s with multiplier 1", symbol, tx.id)
        _open_position(storage, tx, symbol, tx.side, multiplier=multiplier, contract_month=contract_month)
        result.positions_created += 1
        return True

    applied, outstanding = applied_closes(storage, tx)
    candidates = _not_applied(
        storage.positions.find_open_positions(
            tx.user_id, symbol, tx.side, asset_type=AssetType.FUTURES.value, contract_month=contract_month
        ),
        applied,
    )
    if not candidates and not applied:
        logger.warning("No open %s %s %s position for futures close %s", tx.side, symbol, contract_month, tx.id)
        return False
    _require_quantity(tx, candidates, outstanding)
    _consume_fifo(storage, tx, candidates, result, _futures_pnl, applied, outstanding)
    return True


_HANDLERS = {
    AssetType.OPTION: _match_option,
    AssetType.STOCK: _match_stock,
    AssetType.CRYPTO: _match_crypto,
    AssetType.FUTURES: _match_futures,
}
