"""Tests for contract spec lookups and the bounded LRU cache."""

import pytest

from tradeledger.models.futures import ContractSpec
from tradeledger.storage import ContractSpecCache
from tests.conftest import ES_SPEC, USER_ID


class _CountingRepository:
    """Repository double that counts lookups."""

    def __init__(self, specs):
        self.specs = {spec.symbol: spec for spec in specs}
        self.calls = 0

    def get_by_symbol(self, symbol, user_id=None):
        self.calls += 1
        return self.specs.get(symbol.upper())


def _spec(symbol, multiplier=10):
    return ContractSpec(symbol, multiplier, 0.25, 2.5)


class TestContractSpecCache:
    def test_hits_do_not_reach_the_repository(self):
        repository = _CountingRepository([_spec("ES")])
        cache = ContractSpecCache(repository, max_size=4)

        cache.get("ES")
        cache.get("es")

        assert repository.calls == 1

    def test_least_recently_used_is_evicted(self):
        repository = _CountingRepository([_spec("ES"), _spec("NQ"), _spec("CL")])
        cache = ContractSpecCache(repository, max_size=2)

        cache.get("ES")
        cache.get("NQ")
        cache.get("ES")
        cache.get("CL")

        assert len(cache) == 2
        cache.get("ES")
        assert repository.calls == 3
        cache.get("NQ")
        assert repository.calls == 4

    def test_misses_are_not_cached(self):
        repository = _CountingRepository([])
        cache = ContractSpecCache(repository, max_size=2)

        assert cache.get("ZC") is None
        repository.specs["ZC"] = _spec("ZC")

        assert cache.get("ZC").symbol == "ZC"
        assert len(cache) == 1

    def test_invalidate(self):
        repository = _CountingRepository([_spec("ES"), _spec("NQ")])
        cache = ContractSpecCache(repository, max_size=4)
        cache.get("ES")
        cache.get("NQ")

        cache.invalidate("ES")
        assert len(cache) == 1
        cache.invalidate()
        assert len(cache) == 0

    def test_size_must_be_positive(self):
        with pytest.raises(ValueError):
            ContractSpecCache(_CountingRepository([]), max_size=0)


class TestContractSpecRepository:
    def test_user_spec_overrides_shared(self, storage):
        storage.contract_specs.upsert(ES_SPEC)
        storage.contract_specs.upsert(ContractSpec("ES", 5, 0.25, 1.25, user_id=USER_ID))

        assert storage.contract_specs.get_by_symbol("ES", USER_ID).multiplier == 5
        assert storage.contract_specs.get_by_symbol("ES", "someone-else").multiplier == 50
        assert storage.contract_specs.get_by_symbol("ES").multiplier == 50

    def test_upsert_replaces(self, storage):
        storage.contract_specs.upsert(ES_SPEC)
        storage.contract_specs.upsert(ContractSpec("ES", 50, 0.25, 12.50, initial_margin=15000))

        assert storage.contract_specs.get_by_symbol("ES").initial_margin == 15000
