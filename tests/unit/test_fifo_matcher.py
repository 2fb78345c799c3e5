"""Tests for the FIFO matcher: opening, merging, FIFO closes and oversell handling."""

import pytest

from tradeledger.errors import AmbiguousMatchError, InsufficientPositionError
from tradeledger.pipeline.fifo_matcher import match_transactions, signed_amount
from tests.conftest import (
    USER_ID,
    OTHER_USER_ID,
    insert,
    make_crypto_transaction,
    make_futures_transaction,
    make_option_transaction,
    make_stock_transaction,
)


def _positions(storage, **filters):
    return storage.positions.get_all(USER_ID, **filters)


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------

class TestStockMatching:
    def test_buy_opens_long_position(self, storage):
        insert(storage, make_stock_transaction(id="buy-1", quantity=100, price=100.0))

        result = match_transactions(storage, USER_ID)

        assert result.positions_created == 1
        assert result.matched_transaction_ids == ["buy-1"]
        [position] = _positions(storage)
        assert position.side == "long"
        assert position.current_quantity == 100
        assert position.average_opening_price == pytest.approx(100.0)
        assert position.total_cost_basis == pytest.approx(-10000.0)
        assert storage.transactions.get_by_id(USER_ID, "buy-1").position_id == position.id

    def test_second_buy_merges_at_weighted_average(self, storage):
        insert(
            storage,
            make_stock_transaction(id="buy-1", quantity=10, price=100.0, activity_date="2025-01-02"),
            make_stock_transaction(id="buy-2", quantity=10, price=120.0, activity_date="2025-01-05"),
        )

        result = match_transactions(storage, USER_ID)

        assert result.positions_created == 1
        assert result.positions_updated == 1
        [position] = _positions(storage)
        assert position.current_quantity == 20
        assert position.opening_quantity == 20
        assert position.average_opening_price == pytest.approx(110.0)
        assert position.total_cost_basis == pytest.approx(-2200.0)
        assert position.opening_transaction_ids == ["buy-1", "buy-2"]

    def test_partial_sell_releases_proportional_basis(self, storage):
        insert(
            storage,
            make_stock_transaction(id="buy-1", quantity=100, price=100.0, activity_date="2025-01-02"),
            make_stock_transaction(id="sell-1", code="SELL", quantity=40, price=110.0, activity_date="2025-01-10"),
        )

        match_transactions(storage, USER_ID)

        [position] = _positions(storage)
        assert position.status == "open"
        assert position.current_quantity == 60
        assert position.total_cost_basis == pytest.approx(-6000.0)
        assert position.total_closing_amount == pytest.approx(4400.0)
        assert position.realized_pl == pytest.approx(400.0)
        assert position.closing_transaction_ids == ["sell-1"]

    def test_cost_basis_conserved_over_partial_closes(self, storage):
        insert(
            storage,
            make_stock_transaction(id="buy-1", quantity=3, price=33.0, amount=100.0, activity_date="2025-01-02"),
            make_stock_transaction(id="sell-1", code="SELL", quantity=1, price=40.0, activity_date="2025-01-03"),
            make_stock_transaction(id="sell-2", code="SELL", quantity=1, price=40.0, activity_date="2025-01-04"),
            make_stock_transaction(id="sell-3", code="SELL", quantity=1, price=40.0, activity_date="2025-01-05"),
        )

        match_transactions(storage, USER_ID)

        [position] = _positions(storage)
        assert position.status == "closed"
        assert position.current_quantity == 0
        assert position.total_cost_basis == 0.0
        # Proceeds 120 against 100 paid, whatever the rounding of each third
        assert position.realized_pl == pytest.approx(20.0)
        assert position.closed_at == "2025-01-05"

    def test_full_sell_closes_position(self, storage):
        insert(
            storage,
            make_stock_transaction(id="buy-1", quantity=10, price=50.0),
            make_stock_transaction(id="sell-1", code="SELL", quantity=10, price=45.0, activity_date="2025-02-01"),
        )

        match_transactions(storage, USER_ID)

        [position] = _positions(storage)
        assert position.status == "closed"
        assert position.realized_pl == pytest.approx(-50.0)

    def test_oversell_raises_after_batch_and_leaves_position_untouched(self, storage):
        insert(
            storage,
            make_stock_transaction(id="buy-1", quantity=10, price=50.0),
            make_stock_transaction(id="sell-1", code="SELL", quantity=15, price=55.0, activity_date="2025-02-01"),
            make_stock_transaction(id="buy-msft", symbol="MSFT", quantity=5, price=400.0, activity_date="2025-02-02"),
        )

        with pytest.raises(InsufficientPositionError) as exc_info:
            match_transactions(storage, USER_ID)

        result = exc_info.value.result
        assert result.unmatched_count == 1
        assert result.errors[0].transaction_id == "sell-1"
        # The rest of the batch was still processed
        assert result.positions_created == 2
        aapl = _positions(storage, symbol="AAPL")[0]
        assert aapl.current_quantity == 10
        assert aapl.closing_transaction_ids == []
        assert storage.transactions.get_by_id(USER_ID, "sell-1").position_id is None

    def test_sell_with_nothing_open_raises(self, storage):
        insert(storage, make_stock_transaction(id="sell-1", code="SELL", quantity=5))

        with pytest.raises(InsufficientPositionError):
            match_transactions(storage, USER_ID)

    def test_rerun_is_a_no_op(self, storage):
        insert(
            storage,
            make_stock_transaction(id="buy-1", quantity=10, price=50.0),
            make_stock_transaction(id="sell-1", code="SELL", quantity=4, price=60.0, activity_date="2025-02-01"),
        )
        match_transactions(storage, USER_ID)
        before = _positions(storage)

        result = match_transactions(storage, USER_ID)

        assert result.positions_created == 0
        assert result.positions_updated == 0
        assert result.unmatched_count == 0
        assert _positions(storage) == before

    def test_users_are_isolated(self, storage):
        insert(
            storage,
            make_stock_transaction(id="buy-1", quantity=10),
            make_stock_transaction(id="sell-other", user_id=OTHER_USER_ID, code="SELL", quantity=5),
        )

        match_transactions(storage, USER_ID)

        assert len(_positions(storage)) == 1
        assert storage.positions.get_all(OTHER_USER_ID) == []

    def test_import_filter_limits_the_pass(self, storage):
        insert(
            storage,
            make_stock_transaction(id="buy-1", quantity=10, import_id="imp-1"),
            make_stock_transaction(id="buy-2", symbol="MSFT", quantity=10, import_id="imp-2"),
        )

        result = match_transactions(storage, USER_ID, import_id="imp-1")

        assert result.matched_transaction_ids == ["buy-1"]
        assert storage.transactions.get_by_id(USER_ID, "buy-2").position_id is None


# ---------------------------------------------------------------------------
# Crypto FIFO
# ---------------------------------------------------------------------------

class TestCryptoFifo:
    def test_sell_consumes_oldest_position_first(self, storage):
        insert(
            storage,
            make_crypto_transaction(id="c-1", quantity=1.0, price=30000.0, activity_date="2025-01-01"),
            make_crypto_transaction(id="c-2", quantity=1.0, price=40000.0, activity_date="2025-01-02"),
            make_crypto_transaction(id="c-sell", code="SELL", quantity=1.5, price=50000.0, activity_date="2025-01-03"),
        )

        result = match_transactions(storage, USER_ID)

        assert result.positions_created == 2
        assert result.positions_updated == 2
        oldest, newest = _positions(storage)
        assert oldest.opening_transaction_ids == ["c-1"]
        assert oldest.status == "closed"
        assert oldest.realized_pl == pytest.approx(20000.0)
        assert newest.status == "open"
        assert newest.current_quantity == pytest.approx(0.5)
        assert newest.total_cost_basis == pytest.approx(-20000.0)
        assert newest.realized_pl == pytest.approx(5000.0)
        # Matched to the oldest position consumed
        assert storage.transactions.get_by_id(USER_ID, "c-sell").position_id == oldest.id

    def test_sell_without_position_is_left_unmatched(self, storage):
        insert(storage, make_crypto_transaction(id="c-sell", code="SELL", quantity=1.0))

        result = match_transactions(storage, USER_ID)

        assert result.unmatched_count == 1
        assert _positions(storage) == []

    def test_oversell_raises(self, storage):
        insert(
            storage,
            make_crypto_transaction(id="c-1", quantity=0.5),
            make_crypto_transaction(id="c-sell", code="SELL", quantity=1.0, activity_date="2025-01-05"),
        )

        with pytest.raises(InsufficientPositionError):
            match_transactions(storage, USER_ID)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------

class TestOptionMatching:
    def test_long_call_round_trip_pnl(self, storage):
        insert(
            storage,
            make_option_transaction(id="bto", code="BTO", price=2.00),
            make_option_transaction(id="stc", code="STC", price=3.50, activity_date="2025-02-01"),
        )

        match_transactions(storage, USER_ID)

        [position] = _positions(storage)
        assert position.side == "long"
        assert position.status == "closed"
        assert position.multiplier == 100
        assert position.realized_pl == pytest.approx(150.0)
        assert position.closed_at == "2025-02-01"

    def test_short_put_bought_back(self, storage):
        insert(
            storage,
            make_option_transaction(id="sto", code="STO", option_type="put", quantity=2, price=1.50),
            make_option_transaction(
                id="btc", code="BTC", option_type="put", quantity=2, price=0.50, activity_date="2025-02-01"
            ),
        )

        match_transactions(storage, USER_ID)

        [position] = _positions(storage)
        assert position.side == "short"
        assert position.realized_pl == pytest.approx(200.0)

    def test_close_consumes_oldest_contract_first(self, storage):
        insert(
            storage,
            make_option_transaction(id="bto-new", code="BTO", price=3.00, activity_date="2025-01-10"),
            make_option_transaction(id="bto-old", code="BTO", price=2.00, activity_date="2025-01-02"),
            make_option_transaction(id="stc", code="STC", price=4.00, activity_date="2025-02-01"),
        )

        match_transactions(storage, USER_ID)

        oldest, newest = _positions(storage)
        assert oldest.opening_transaction_ids == ["bto-old"]
        assert oldest.status == "closed"
        assert oldest.realized_pl == pytest.approx(200.0)
        assert newest.status == "open"
        assert newest.current_quantity == 1
        assert newest.closing_transaction_ids == []
        assert storage.transactions.get_by_id(USER_ID, "stc").position_id == oldest.id

    def test_close_needs_same_contract(self, storage):
        insert(
            storage,
            make_option_transaction(id="bto", code="BTO", strike_price=150.0),
            make_option_transaction(id="stc", code="STC", strike_price=155.0, activity_date="2025-02-01"),
        )

        result = match_transactions(storage, USER_ID)

        assert result.unmatched_count == 1
        assert _positions(storage)[0].status == "open"

    def test_over_close_is_left_unmatched(self, storage):
        insert(
            storage,
            make_option_transaction(id="bto", code="BTO", quantity=1),
            make_option_transaction(id="stc", code="STC", quantity=2, activity_date="2025-02-01"),
        )

        result = match_transactions(storage, USER_ID)

        assert result.unmatched_count == 1
        [position] = _positions(storage)
        assert position.current_quantity == 1
        assert storage.transactions.get_by_id(USER_ID, "stc").position_id is None

    def test_conflicting_flags_fail_only_that_transaction(self, storage):
        insert(
            storage,
            make_option_transaction(id="bad", code="BTO", is_opening=False),
            make_option_transaction(id="good", code="STO", option_type="put"),
        )

        result = match_transactions(storage, USER_ID)

        assert result.positions_created == 1
        assert [e.transaction_id for e in result.errors] == ["bad"]

    def test_lifecycle_events_are_not_matched_here(self, storage):
        insert(
            storage,
            make_option_transaction(id="bto", code="BTO"),
            make_option_transaction(id="exp", code="OEXP", price=0.0, activity_date="2025-03-21"),
        )

        result = match_transactions(storage, USER_ID)

        assert result.unmatched_count == 0
        assert storage.transactions.get_by_id(USER_ID, "exp").position_id is None


# ---------------------------------------------------------------------------
# Futures
# ---------------------------------------------------------------------------

class TestFuturesMatching:
    def test_long_close_uses_contract_multiplier(self, storage, spec_cache):
        insert(
            storage,
            make_futures_transaction(id="f-open", code="BUY", quantity=2, price=5000.0),
            make_futures_transaction(id="f-close", code="SELL", quantity=2, price=5010.0, activity_date="2025-01-03"),
        )

        match_transactions(storage, USER_ID, spec_cache=spec_cache)

        [position] = _positions(storage)
        assert position.symbol == "ES"
        assert position.contract_month == "H25"
        assert position.multiplier == 50
        assert position.status == "closed"
        assert position.realized_pl == pytest.approx(1000.0)

    def test_short_close(self, storage, spec_cache):
        insert(
            storage,
            make_futures_transaction(id="f-open", code="SELL", price=5000.0, is_opening=True),
            make_futures_transaction(
                id="f-close", code="BUY", price=4990.0, is_opening=False, activity_date="2025-01-03"
            ),
        )

        match_transactions(storage, USER_ID, spec_cache=spec_cache)

        [position] = _positions(storage)
        assert position.side == "short"
        assert position.realized_pl == pytest.approx(500.0)

    def test_missing_spec_falls_back_to_multiplier_one(self, storage):
        insert(
            storage,
            make_futures_transaction(id="f-open", instrument="NQM25", price=20000.0),
            make_futures_transaction(
                id="f-close", instrument="NQM25", code="SELL", price=20010.0, activity_date="2025-01-03"
            ),
        )

        match_transactions(storage, USER_ID)

        [position] = _positions(storage)
        assert position.multiplier == 1
        assert position.realized_pl == pytest.approx(10.0)

    def test_other_contract_month_does_not_match(self, storage, spec_cache):
        insert(
            storage,
            make_futures_transaction(id="f-open", instrument="ESH25"),
            make_futures_transaction(id="f-close", instrument="ESM25", code="SELL", activity_date="2025-01-03"),
        )

        result = match_transactions(storage, USER_ID, spec_cache=spec_cache)

        assert result.unmatched_count == 1


# ---------------------------------------------------------------------------
# Interrupted runs
# ---------------------------------------------------------------------------

def _fail_once(monkeypatch, repository, method, should_fail):
    """Make ``repository.method`` raise the first time ``should_fail`` matches its arguments."""
    original = getattr(repository, method)
    state = {"failed": False}

    def wrapper(*args, **kwargs):
        if not state["failed"] and should_fail(*args, **kwargs):
            state["failed"] = True
            raise RuntimeError("connection lost")
        return original(*args, **kwargs)

    monkeypatch.setattr(repository, method, wrapper)


class TestInterruptedRuns:
    def test_sell_replayed_after_crash_is_applied_once(self, storage, monkeypatch):
        insert(storage, make_stock_transaction(id="buy-1", quantity=10, price=50.0))
        match_transactions(storage, USER_ID)
        insert(
            storage,
            make_stock_transaction(id="sell-1", code="SELL", quantity=4, price=60.0, activity_date="2025-02-01"),
        )
        _fail_once(monkeypatch, storage.transactions, "update", lambda tx_id, **fields: tx_id == "sell-1")

        with pytest.raises(RuntimeError):
            match_transactions(storage, USER_ID)
        assert storage.transactions.get_by_id(USER_ID, "sell-1").position_id is None

        result = match_transactions(storage, USER_ID)

        assert result.matched_transaction_ids == ["sell-1"]
        assert result.positions_updated == 0
        [position] = _positions(storage)
        assert position.current_quantity == 6
        assert position.total_cost_basis == pytest.approx(-300.0)
        assert position.realized_pl == pytest.approx(40.0)
        assert position.closing_transaction_ids == ["sell-1"]
        assert storage.transactions.get_by_id(USER_ID, "sell-1").position_id == position.id

    def test_close_interrupted_between_positions_resumes_with_the_rest(self, storage, monkeypatch):
        insert(
            storage,
            make_crypto_transaction(id="c-1", quantity=1.0, price=30000.0, activity_date="2025-01-01"),
            make_crypto_transaction(id="c-2", quantity=1.0, price=40000.0, activity_date="2025-01-02"),
        )
        match_transactions(storage, USER_ID)
        oldest, newest = _positions(storage)
        insert(
            storage,
            make_crypto_transaction(id="c-sell", code="SELL", quantity=1.5, price=50000.0, activity_date="2025-01-03"),
        )
        _fail_once(
            monkeypatch, storage.positions, "close_position",
            lambda position_id, *args, **kwargs: position_id == newest.id,
        )

        with pytest.raises(RuntimeError):
            match_transactions(storage, USER_ID)

        result = match_transactions(storage, USER_ID)

        assert result.positions_updated == 1
        oldest, newest = _positions(storage)
        assert oldest.status == "closed"
        assert oldest.realized_pl == pytest.approx(20000.0)
        assert newest.current_quantity == pytest.approx(0.5)
        assert newest.realized_pl == pytest.approx(5000.0)
        assert newest.closed_quantities == {"c-sell": pytest.approx(0.5)}
        assert storage.transactions.get_by_id(USER_ID, "c-sell").position_id == oldest.id

    def test_merged_buy_replayed_after_crash_is_applied_once(self, storage, monkeypatch):
        insert(storage, make_stock_transaction(id="buy-1", quantity=10, price=100.0))
        match_transactions(storage, USER_ID)
        insert(storage, make_stock_transaction(id="buy-2", quantity=10, price=120.0, activity_date="2025-01-05"))
        _fail_once(monkeypatch, storage.transactions, "update", lambda tx_id, **fields: tx_id == "buy-2")

        with pytest.raises(RuntimeError):
            match_transactions(storage, USER_ID)

        result = match_transactions(storage, USER_ID)

        assert result.matched_transaction_ids == ["buy-2"]
        assert result.positions_updated == 0
        [position] = _positions(storage)
        assert position.current_quantity == 20
        assert position.average_opening_price == pytest.approx(110.0)
        assert position.total_cost_basis == pytest.approx(-2200.0)
        assert position.opening_transaction_ids == ["buy-1", "buy-2"]

    def test_open_replayed_after_crash_does_not_duplicate_position(self, storage, monkeypatch):
        insert(storage, make_option_transaction(id="bto", code="BTO"))
        _fail_once(monkeypatch, storage.transactions, "update", lambda tx_id, **fields: tx_id == "bto")

        with pytest.raises(RuntimeError):
            match_transactions(storage, USER_ID)

        result = match_transactions(storage, USER_ID)

        assert result.positions_created == 0
        [position] = _positions(storage)
        assert storage.transactions.get_by_id(USER_ID, "bto").position_id == position.id


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestSignedAmount:
    def test_buys_are_debits_and_sells_credits(self):
        assert signed_amount(make_stock_transaction(amount=500.0)) == -500.0
        assert signed_amount(make_stock_transaction(code="SELL", amount=-500.0)) == 500.0
        assert signed_amount(make_option_transaction(code="BTC", amount=120.0)) == -120.0
        assert signed_amount(make_option_transaction(code="STO", amount=120.0)) == 120.0


class TestFindOpenPositions:
    def test_zero_quantity_open_position_is_ambiguous(self, storage):
        insert(storage, make_stock_transaction(id="buy-1", quantity=10))
        match_transactions(storage, USER_ID)
        [position] = _positions(storage)
        storage.positions.update(position.id, current_quantity=0.0)

        with pytest.raises(AmbiguousMatchError):
            storage.positions.find_open_positions(USER_ID, "AAPL", "long", asset_type="stock")


class TestClosePosition:
    def test_same_closing_transaction_is_not_applied_twice(self, storage):
        insert(storage, make_stock_transaction(id="buy-1", quantity=10, price=50.0))
        match_transactions(storage, USER_ID)
        [position] = _positions(storage)

        storage.positions.close_position(position.id, 4, "sell-1", closing_amount=240.0, realized_pl=40.0)
        again = storage.positions.close_position(position.id, 4, "sell-1", closing_amount=240.0, realized_pl=40.0)

        assert again.current_quantity == 6
        assert again.realized_pl == pytest.approx(40.0)
        assert again.closing_transaction_ids == ["sell-1"]
        assert again.closed_quantities == {"sell-1": 4}
