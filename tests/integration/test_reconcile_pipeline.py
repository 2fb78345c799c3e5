"""
Integration tests: end-to-end: transactions -> positions -> strategies -> cash.

Runs the ReconciliationEngine over a realistic account history.
"""

from datetime import date

import pytest

from tradeledger.errors import InsufficientPositionError, NotFoundError, UnmatchedReferenceError
from tradeledger.models import cash as codes
from tradeledger.services import cleanup_service
from tests.conftest import (
    USER_ID,
    insert,
    make_cash_transaction,
    make_futures_transaction,
    make_option_transaction,
    make_stock_transaction,
)

JAN_31 = date(2025, 1, 31)
JUN_30 = date(2025, 6, 30)


def _seed_account(storage):
    """Deposit, an AAPL round trip and a SPY iron condor entered as one order."""
    condor = dict(symbol="SPY", expiration_date="2025-02-21", activity_date="2025-01-10", batch_id="ic-1")
    insert(
        storage,
        make_cash_transaction(id="dep", amount=10000.0, activity_date="2025-01-02", settle_date="2025-01-02"),
        make_stock_transaction(id="buy", quantity=10, price=100.0, activity_date="2025-01-03"),
        make_stock_transaction(id="sell", code="SELL", quantity=5, price=120.0, activity_date="2025-01-20"),
        make_option_transaction(id="lp", code="BTO", option_type="put", strike_price=400.0, price=1.00, **condor),
        make_option_transaction(id="sp", code="STO", option_type="put", strike_price=410.0, price=2.00, **condor),
        make_option_transaction(id="sc", code="STO", option_type="call", strike_price=450.0, price=2.00, **condor),
        make_option_transaction(id="lc", code="BTO", option_type="call", strike_price=460.0, price=1.00, **condor),
    )


def _strategy(storage, strategy_type):
    [strategy] = storage.strategies.get_all(USER_ID, strategy_type=strategy_type)
    return strategy


# ---------------------------------------------------------------------------
# Full pipeline
# ---------------------------------------------------------------------------

class TestReconcilePipeline:
    def test_first_run_builds_ledger(self, storage, engine):
        _seed_account(storage)

        result = engine.reconcile(USER_ID, as_of=JAN_31)

        assert result.matching.positions_created == 5
        assert result.matching.positions_updated == 1
        assert result.matching.unmatched_count == 0
        assert result.expirations.positions_updated == 0
        assert result.detection.strategies_created == 2
        assert result.detection.positions_grouped == 5
        assert result.strategies_closed == 0

        condor = _strategy(storage, "iron_condor")
        assert condor.leg_count == 4
        assert condor.total_opening_cost == pytest.approx(200.0)

        entries = storage.cash_ledger.get_all(USER_ID)
        assert sorted(e.transaction_code for e in entries) == [
            codes.OPTION_MULTILEG_CREDIT, codes.STOCK_BUY, codes.STOCK_SELL,
        ]
        assert result.balance.total_cash == pytest.approx(9800.0)
        assert result.balance.available_cash == pytest.approx(9800.0)

    def test_expiration_closes_strategy(self, storage, engine):
        _seed_account(storage)
        engine.reconcile(USER_ID, as_of=JAN_31)

        result = engine.reconcile(USER_ID, as_of=JUN_30)

        assert result.expirations.positions_updated == 4
        assert result.strategies_closed == 1
        assert result.cash.entries_created == 0
        condor = _strategy(storage, "iron_condor")
        assert condor.status == "expired"
        assert condor.realized_pl == pytest.approx(200.0)
        assert condor.closed_at == "2025-02-21"

        [aapl] = storage.positions.get_all(USER_ID, asset_type="stock")
        assert aapl.current_quantity == 5
        assert aapl.realized_pl == pytest.approx(100.0)

    def test_rerun_changes_nothing(self, storage, engine):
        _seed_account(storage)
        engine.reconcile(USER_ID, as_of=JAN_31)
        engine.reconcile(USER_ID, as_of=JUN_30)
        positions = storage.positions.get_all(USER_ID)
        strategies = storage.strategies.get_all(USER_ID)

        result = engine.reconcile(USER_ID, as_of=JUN_30)

        assert not result.changed
        assert storage.positions.get_all(USER_ID) == positions
        assert storage.strategies.get_all(USER_ID) == strategies
        assert len(storage.cash_ledger.get_all(USER_ID)) == 3

    def test_new_import_extends_existing_position(self, storage, engine):
        _seed_account(storage)
        engine.reconcile(USER_ID, as_of=JAN_31)
        insert(storage, make_stock_transaction(
            id="buy-2", quantity=5, price=130.0, activity_date="2025-01-25", import_id="imp-2"
        ))

        result = engine.reconcile(USER_ID, import_id="imp-2", as_of=JAN_31)

        assert result.matching.positions_updated == 1
        [aapl] = storage.positions.get_all(USER_ID, asset_type="stock")
        assert aapl.current_quantity == 10
        assert aapl.average_opening_price == pytest.approx(115.0)

    def test_merged_buy_refreshes_strategy_leg(self, storage, engine):
        _seed_account(storage)
        engine.reconcile(USER_ID, as_of=JAN_31)
        insert(storage, make_stock_transaction(
            id="buy-2", quantity=5, price=130.0, activity_date="2025-01-25", import_id="imp-2"
        ))

        engine.reconcile(USER_ID, import_id="imp-2", as_of=JAN_31)

        [aapl] = storage.positions.get_all(USER_ID, asset_type="stock")
        strategy = storage.strategies.get_by_id(aapl.strategy_id)
        [leg] = strategy.legs
        assert leg.position_id == aapl.id
        assert leg.quantity == 10
        assert leg.opening_price == pytest.approx(115.0)
        assert strategy.leg_count == 1
        assert strategy.total_opening_cost == pytest.approx(aapl.total_cost_basis)
        assert strategy.total_opening_cost == pytest.approx(-1150.0)

    def test_oversell_stops_the_run(self, storage, engine):
        insert(
            storage,
            make_stock_transaction(id="buy", quantity=5),
            make_stock_transaction(id="sell", code="SELL", quantity=6, activity_date="2025-01-05"),
        )

        with pytest.raises(InsufficientPositionError):
            engine.reconcile(USER_ID, as_of=JAN_31)

        assert storage.strategies.get_all(USER_ID) == []
        assert storage.cash_ledger.get_all(USER_ID) == []

    def test_malformed_option_does_not_block_later_runs(self, storage, engine):
        insert(
            storage,
            make_option_transaction(id="bad", code="BTO", strike_price=None),
            make_stock_transaction(id="buy", quantity=5, price=100.0),
        )

        first = engine.reconcile(USER_ID, as_of=JAN_31)
        second = engine.reconcile(USER_ID, as_of=JAN_31)

        assert [e.transaction_id for e in first.matching.errors] == ["bad"]
        assert [e.transaction_id for e in first.cash.errors] == ["bad"]
        assert [e.transaction_id for e in second.cash.errors] == ["bad"]
        assert [e.transaction_id for e in storage.cash_ledger.get_all(USER_ID)] == ["buy"]
        assert second.balance.total_cash == pytest.approx(-500.0)
        assert storage.transactions.get_by_id(USER_ID, "bad").position_id is None

    def test_futures_round_trip_cash(self, storage, engine):
        insert(
            storage,
            make_futures_transaction(id="f-open", quantity=1, price=5000.0, fees=2.25),
            make_futures_transaction(id="f-close", code="SELL", quantity=1, price=5020.0, fees=2.25,
                                     activity_date="2025-01-06"),
        )

        result = engine.reconcile(USER_ID, as_of=JAN_31)

        assert [e.transaction_code for e in result.cash.entries] == [
            codes.FUTURES_MARGIN, codes.FEE,
            codes.FUTURES_MARGIN_RELEASE, codes.FUTURES_PROFIT, codes.FEE,
        ]
        assert result.balance.total_cash == pytest.approx(995.5)
        assert result.balance.margin_used == 0

    def test_futures_without_spec_fails_cash_stage(self, storage, engine):
        insert(storage, make_futures_transaction(id="f-open", instrument="CLG25", price=75.0))

        with pytest.raises(UnmatchedReferenceError):
            engine.reconcile(USER_ID, as_of=JAN_31)

        # Matching already committed the position
        assert len(storage.positions.get_all(USER_ID)) == 1


# ---------------------------------------------------------------------------
# Cleanup cascades
# ---------------------------------------------------------------------------

class TestCleanup:
    def test_deleting_opening_transaction_removes_position_and_journal(self, storage, engine):
        _seed_account(storage)
        engine.reconcile(USER_ID, as_of=JAN_31)
        [aapl] = storage.positions.get_all(USER_ID, asset_type="stock")
        journal_id = storage.journal_entries.create(USER_ID, "AAPL swing", position_ids=[aapl.id])

        result = cleanup_service.delete_transaction(storage, USER_ID, "buy")

        assert result.positions_deleted == [aapl.id]
        assert result.journal_entries_deleted == 1
        assert result.cash_entries_deleted == 1
        assert storage.journal_entries.find_referencing(USER_ID, position_ids=[aapl.id]) == []
        assert journal_id not in storage.journal_entries.find_referencing(USER_ID, transaction_ids=["buy"])
        assert storage.transactions.get_by_id(USER_ID, "sell").position_id is None

    def test_deleting_closing_transaction_keeps_position(self, storage, engine):
        _seed_account(storage)
        engine.reconcile(USER_ID, as_of=JAN_31)
        [aapl] = storage.positions.get_all(USER_ID, asset_type="stock")

        result = cleanup_service.delete_transaction(storage, USER_ID, "sell")

        assert result.positions_updated == [aapl.id]
        assert storage.positions.get_by_id(aapl.id).closing_transaction_ids == []
        with pytest.raises(NotFoundError):
            storage.transactions.get_by_id(USER_ID, "sell")

    def test_deleting_condor_leg_drops_batch_cash(self, storage, engine):
        _seed_account(storage)
        engine.reconcile(USER_ID, as_of=JAN_31)

        result = cleanup_service.delete_transaction(storage, USER_ID, "lc")

        assert result.cash_entries_deleted == 1
        linked = storage.cash_ledger.linked_transaction_ids(USER_ID)
        assert {"lp", "sp", "sc"}.isdisjoint(linked)

    def test_deleted_strategy_is_rebuilt_on_next_run(self, storage, engine):
        _seed_account(storage)
        engine.reconcile(USER_ID, as_of=JAN_31)
        condor = _strategy(storage, "iron_condor")
        storage.journal_entries.create(USER_ID, "Condor notes", strategy_id=condor.id)

        result = cleanup_service.delete_strategy(storage, USER_ID, condor.id)

        assert len(result.positions_deleted) == 4
        assert result.journal_entries_deleted == 1
        with pytest.raises(NotFoundError):
            storage.strategies.get_by_id(condor.id)

        rerun = engine.reconcile(USER_ID, as_of=JAN_31)
        assert rerun.matching.positions_created == 4
        assert rerun.detection.strategies_created == 1
        assert rerun.cash.entries_created == 0

    def test_deleting_position_unmatches_its_transactions(self, storage, engine):
        _seed_account(storage)
        engine.reconcile(USER_ID, as_of=JAN_31)
        [aapl] = storage.positions.get_all(USER_ID, asset_type="stock")

        cleanup_service.delete_position(storage, USER_ID, aapl.id)

        unmatched = storage.transactions.get_all(USER_ID, asset_type="stock", unmatched_only=True)
        assert [tx.id for tx in unmatched] == ["buy", "sell"]
