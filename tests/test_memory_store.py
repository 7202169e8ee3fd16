from __future__ import annotations

import gc
from dataclasses import replace
from decimal import Decimal

import pytest

from defihub.config import Settings
from defihub.errors import ConcurrencyConflict
from defihub.store.memory import MemoryStore
from defihub.store.seed import build_store


def _store() -> MemoryStore:
    return build_store(Settings(journal_dir="data/journal"))


def test_pool_lookup_ignores_token_order() -> None:
    store = _store()
    assert store.get_pool("ETH", "USDC") == store.get_pool("USDC", "ETH")
    assert store.get_pool("ETH", "ETH") is None
    assert store.get_pool("ETH", "WBTC") is None


def test_put_pool_bumps_version_and_rejects_stale_writes() -> None:
    store = _store()
    pool = store.get_pool("ETH", "USDC")
    assert pool is not None

    stored = store.put_pool(replace(pool, reserve_a=pool.reserve_a + 1))
    assert stored.version == pool.version + 1

    with pytest.raises(ConcurrencyConflict):
        store.put_pool(replace(pool, reserve_a=pool.reserve_a + 2))
    assert store.get_pool("ETH", "USDC") == stored


def test_put_markets_is_all_or_nothing() -> None:
    store = _store()
    eth = store.get_market("ETH")
    usdc = store.get_market("USDC")
    assert eth is not None and usdc is not None
    store.put_markets(replace(usdc, total_borrowed=usdc.total_borrowed + 1))

    with pytest.raises(ConcurrencyConflict):
        store.put_markets(
            replace(eth, total_supplied=Decimal("1")),
            replace(usdc, total_supplied=Decimal("1")),
        )
    assert store.get_market("ETH") == eth


def test_lock_is_reentrant_across_overlapping_keys() -> None:
    store = _store()
    with store.lock("pool:1", "user:alice"):
        with store.lock("user:alice"):
            assert store.lock_count() == 2


def test_lock_table_drops_released_keys() -> None:
    store = _store()
    for i in range(1000):
        with store.lock(f"user:{i}", "pool:1"):
            pass
    gc.collect()
    assert store.lock_count() == 0

    with store.lock("user:alice"):
        assert store.lock_count() == 1
    gc.collect()
    assert store.lock_count() == 0



def test_set_price_rejects_non_positive() -> None:
    store = _store()
    with pytest.raises(ValueError):
        store.set_price("ETH", Decimal("0"))
    assert store.get_price("ETH") == Decimal("2500")


def test_seeded_catalogue() -> None:
    store = _store()
    assert [p.pool_id for p in store.list_pools()] == [1, 2, 3, 4]
    assert {c.chain_id for c in store.list_chains()} == {1, 137, 42161, 10, 56, 43114}
    sol = store.get_perp_market("SOL-PERP")
    assert sol is not None
    assert sol.max_leverage == Decimal("20")
    usdc = store.get_market("USDC")
    assert usdc is not None
    assert usdc.liquidation_threshold > usdc.collateral_factor


def test_list_by_user_starts_empty() -> None:
    holdings = _store().list_by_user("nobody")
    assert holdings.positions == []
    assert holdings.loans == []
    assert holdings.stakes == []
    assert holdings.trades == []
    assert holdings.perp_positions == []
    assert holdings.transfers == []
