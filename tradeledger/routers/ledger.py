"""Ledger routes: positions, strategies, cash balance and cleanup."""

from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends
from loguru import logger

from tradeledger.dependencies import get_current_user_id, get_lock_registry, get_storage
from tradeledger.pipeline.locks import UserLockRegistry
from tradeledger.pipeline.strategy_engine import link_adjustment
from tradeledger.schemas import (
    CashBalanceOut,
    CleanupResponse,
    PositionOut,
    StrategyAdjustment,
    StrategyOut,
)
from tradeledger.services import cleanup_service
from tradeledger.services.cash_balance_service import recalculate_balance
from tradeledger.storage import Storage

router = APIRouter()


def _strategy_out(strategy) -> StrategyOut:
    data = asdict(strategy)
    return StrategyOut(**data)


@router.get("/api/positions", response_model=List[PositionOut])
def list_positions(
    status: Optional[str] = None,
    asset_type: Optional[str] = None,
    symbol: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    positions = storage.positions.get_all(user_id, status=status, asset_type=asset_type, symbol=symbol)
    return [PositionOut(**asdict(p)) for p in positions]


@router.get("/api/strategies", response_model=List[StrategyOut])
def list_strategies(
    status: Optional[str] = None,
    strategy_type: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    strategies = storage.strategies.get_all(user_id, status=status, strategy_type=strategy_type)
    return [_strategy_out(s) for s in strategies]


@router.post("/api/strategies/{strategy_id}/adjustment", response_model=StrategyOut)
def mark_adjustment(
    strategy_id: str,
    body: StrategyAdjustment,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
    locks: UserLockRegistry = Depends(get_lock_registry),
):
    """Record that a strategy is a roll of an earlier one."""
    with locks.hold(user_id):
        strategy = link_adjustment(storage, user_id, strategy_id, body.adjusted_from_strategy_id)
    return _strategy_out(strategy)


@router.delete("/api/strategies/{strategy_id}", response_model=CleanupResponse)
def delete_strategy(
    strategy_id: str,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
    locks: UserLockRegistry = Depends(get_lock_registry),
):
    with locks.hold(user_id):
        result = cleanup_service.delete_strategy(storage, user_id, strategy_id)
    return CleanupResponse(**asdict(result))


@router.delete("/api/positions/{position_id}", response_model=CleanupResponse)
def delete_position(
    position_id: str,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
    locks: UserLockRegistry = Depends(get_lock_registry),
):
    with locks.hold(user_id):
        result = cleanup_service.delete_position(storage, user_id, position_id)
    return CleanupResponse(**asdict(result))


@router.delete("/api/transactions/{transaction_id}", response_model=CleanupResponse)
def delete_transaction(
    transaction_id: str,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
    locks: UserLockRegistry = Depends(get_lock_registry),
):
    with locks.hold(user_id):
        result = cleanup_service.delete_transaction(storage, user_id, transaction_id)
    return CleanupResponse(**asdict(result))


@router.get("/api/cash/balance", response_model=CashBalanceOut)
def get_cash_balance(
    refresh: bool = False,
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
    locks: UserLockRegistry = Depends(get_lock_registry),
):
    """Latest cash balance snapshot; ``refresh=true`` recomputes it first."""
    balance = None if refresh else storage.cash_balances.get_current(user_id)
    if balance is None:
        logger.info(f"Computing cash balance for {user_id}")
        with locks.hold(user_id):
            balance = recalculate_balance(storage, user_id)
    return CashBalanceOut(**asdict(balance))
