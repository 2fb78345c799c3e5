"""
Shared pytest fixtures and transaction factory helpers for Trade Ledger tests.

Each test gets a fresh temporary SQLite database (auto-cleaned by pytest).
"""

import pytest

from tradeledger.database.db_manager import DatabaseManager
from tradeledger.models.futures import ContractSpec
from tradeledger.models.transaction import (
    OPTION_TRADE_CODES,
    CashTransaction,
    CryptoTransaction,
    FuturesTransaction,
    OptionTransaction,
    StockTransaction,
)
from tradeledger.pipeline.orchestrator import ReconciliationEngine
from tradeledger.storage import ContractSpecCache, Storage

USER_ID = "user-0001"
OTHER_USER_ID = "user-0002"

ES_SPEC = ContractSpec("ES", 50, 0.25, 12.50, 13200, 12000, "E-mini S&P 500", "CME")


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db(tmp_path):
    """Temporary SQLite database, fully initialized and auto-cleaned."""
    db_manager = DatabaseManager(f"sqlite:///{tmp_path / 'test.db'}")
    db_manager.initialize_database()
    yield db_manager
    db_manager.dispose()


@pytest.fixture
def storage(db):
    return Storage(db)


@pytest.fixture
def spec_cache(storage):
    """Contract spec cache with the E-mini S&P spec seeded."""
    storage.contract_specs.upsert(ES_SPEC)
    return ContractSpecCache(storage.contract_specs, max_size=8)


@pytest.fixture
def engine(storage, spec_cache):
    return ReconciliationEngine(storage, spec_cache=spec_cache)


def insert(storage, *transactions):
    """Store transactions and return them."""
    return storage.transactions.create_many(transactions)


# ---------------------------------------------------------------------------
# Transaction factory helpers
# ---------------------------------------------------------------------------

def make_stock_transaction(
    *,
    id="tx-stock-001",
    user_id=USER_ID,
    symbol="AAPL",
    code="BUY",
    quantity=100,
    price=100.0,
    amount=None,
    fees=0.0,
    activity_date="2025-01-02",
    settle_date=None,
    import_id=None,
):
    return StockTransaction(
        id=id,
        user_id=user_id,
        symbol=symbol,
        transaction_code=code,
        quantity=quantity,
        amount=amount if amount is not None else price * quantity,
        activity_date=activity_date,
        price=price,
        fees=fees,
        settle_date=settle_date,
        import_id=import_id,
        description=f"{code} {quantity} {symbol}",
    )


def make_crypto_transaction(
    *,
    id="tx-crypto-001",
    user_id=USER_ID,
    symbol="BTC",
    code="BUY",
    quantity=1.0,
    price=30000.0,
    amount=None,
    fees=0.0,
    activity_date="2025-01-02",
):
    return CryptoTransaction(
        id=id,
        user_id=user_id,
        symbol=symbol,
        transaction_code=code,
        quantity=quantity,
        amount=amount if amount is not None else price * quantity,
        activity_date=activity_date,
        price=price,
        fees=fees,
    )


def make_option_transaction(
    *,
    id="tx-opt-001",
    user_id=USER_ID,
    symbol="AAPL",
    code="BTO",
    option_type="call",
    strike_price=150.0,
    expiration_date="2025-03-21",
    quantity=1,
    price=2.00,
    amount=None,
    fees=0.0,
    activity_date="2025-01-02",
    batch_id=None,
    is_opening=None,
    is_long=None,
):
    """Build an option transaction; opening/long flags default from the code."""
    flags = OPTION_TRADE_CODES.get(code, (False, True))
    return OptionTransaction(
        id=id,
        user_id=user_id,
        symbol=symbol,
        transaction_code=code,
        quantity=quantity,
        amount=amount if amount is not None else price * quantity * 100,
        activity_date=activity_date,
        price=price,
        fees=fees,
        batch_id=batch_id,
        description=f"{code} {quantity} {symbol} {expiration_date} {strike_price} {option_type}",
        option_type=option_type,
        strike_price=strike_price,
        expiration_date=expiration_date,
        is_opening=flags[0] if is_opening is None else is_opening,
        is_long=flags[1] if is_long is None else is_long,
    )


def make_futures_transaction(
    *,
    id="tx-fut-001",
    user_id=USER_ID,
    instrument="ESH25",
    code="BUY",
    quantity=1,
    price=5000.0,
    amount=0.0,
    fees=0.0,
    activity_date="2025-01-02",
    is_opening=None,
):
    return FuturesTransaction(
        id=id,
        user_id=user_id,
        symbol=instrument,
        transaction_code=code,
        quantity=quantity,
        amount=amount,
        activity_date=activity_date,
        price=price,
        fees=fees,
        instrument=instrument,
        is_opening=is_opening,
    )


def make_cash_transaction(
    *,
    id="tx-cash-001",
    user_id=USER_ID,
    code="ACH",
    amount=1000.0,
    activity_date="2025-01-02",
    settle_date=None,
):
    return CashTransaction(
        id=id,
        user_id=user_id,
        symbol="USD",
        transaction_code=code,
        quantity=0,
        amount=amount,
        activity_date=activity_date,
        settle_date=settle_date,
    )
