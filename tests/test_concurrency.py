from __future__ import annotations

from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from defihub.amm.engine import AmmEngine
from defihub.config import Settings
from defihub.lending.engine import LendingEngine
from defihub.perps.engine import PerpEngine
from defihub.staking.engine import StakingEngine
from defihub.store.memory import MemoryStore
from defihub.store.seed import build_store
from defihub.utils.decimals import precise

WORKERS = 16


def _store() -> tuple[MemoryStore, Settings]:
    settings = Settings(journal_dir="data/journal")
    return build_store(settings), settings


def test_parallel_supplies_are_not_lost() -> None:
    store, settings = _store()
    engine = LendingEngine(store, settings)
    before = engine.get_market("ETH").total_supplied
    users = [f"u{i % 4}" for i in range(400)]

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        list(pool.map(lambda user: engine.supply(user, "ETH", Decimal("1")), users))

    assert engine.get_market("ETH").total_supplied == before + 400
    for user, count in Counter(users).items():
        position = store.get_position(user, "ETH")
        assert position is not None
        assert position.supplied == count == 100


def test_parallel_swaps_never_shrink_k() -> None:
    store, settings = _store()
    engine = AmmEngine(store, settings)
    start = store.get_pool("ETH", "USDC")
    assert start is not None

    def trade(i: int) -> None:
        if i % 2:
            engine.swap(f"u{i}", "ETH", "USDC", Decimal("1"))
        else:
            engine.swap(f"u{i}", "USDC", "ETH", Decimal("2500"))

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        list(pool.map(trade, range(200)))

    trades = sorted(store.list_trades(), key=lambda t: t.trade_id)
    assert len(trades) == 200

    # Trade ids are assigned under the pool lock, so id order is settlement order.
    reserve_eth, reserve_usdc = start.reserve_a, start.reserve_b
    with precise():
        k = reserve_eth * reserve_usdc
        for t in trades:
            if t.token_in == "ETH":
                reserve_eth += t.amount_in
                reserve_usdc -= t.amount_out
            else:
                reserve_usdc += t.amount_in
                reserve_eth -= t.amount_out
            next_k = reserve_eth * reserve_usdc
            assert next_k >= k
            k = next_k

    end = store.get_pool("ETH", "USDC")
    assert end is not None
    assert (end.reserve_a, end.reserve_b) == (reserve_eth, reserve_usdc)
    assert end.version == start.version + 200


def test_parallel_stakes_and_opens_keep_pool_totals() -> None:
    store, settings = _store()
    staking = StakingEngine(store, settings)
    perps = PerpEngine(store, settings)
    tvl_before = staking.get_pool(4).tvl
    oi_before = perps.get_market("ETH-PERP").open_interest

    def work(i: int) -> None:
        staking.stake(4, f"u{i % 8}", Decimal("100"))
        perps.open(f"u{i % 8}", "ETH-PERP", Decimal("1"), "long", Decimal("10"), Decimal("250"))

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        list(pool.map(work, range(120)))

    assert staking.get_pool(4).tvl == tvl_before + 120 * 100
    assert perps.get_market("ETH-PERP").open_interest == oi_before + 120 * Decimal("2501.20")
    assert sum(len(staking.stakes_for(f"u{i}")) for i in range(8)) == 120
