from __future__ import annotations

from decimal import Decimal

import pytest

from defihub.amm.engine import AmmEngine, compute_quote
from defihub.config import Settings
from defihub.errors import ConcurrencyConflict, InvalidInput, PoolNotFound, SlippageExceeded
from defihub.store.memory import MemoryStore
from defihub.store.seed import build_store
from defihub.types import Pool


def _engine() -> tuple[AmmEngine, MemoryStore]:
    settings = Settings(journal_dir="data/journal")
    store = build_store(settings)
    return AmmEngine(store, settings), store


def test_quote_fee_is_exact_for_eth_usdc() -> None:
    engine, _ = _engine()
    quote = engine.quote("ETH", "USDC", Decimal("100"))
    assert quote.fee == Decimal("0.3")
    assert quote.amount_after_fee == Decimal("99.7")
    assert quote.route == ("ETH", "USDC")


def test_quote_is_deterministic_and_side_effect_free() -> None:
    engine, store = _engine()
    before = store.get_pool("ETH", "USDC")
    first = engine.quote("ETH", "USDC", Decimal("12.5"))
    second = engine.quote("ETH", "USDC", Decimal("12.5"))
    assert first == second
    assert store.get_pool("ETH", "USDC") == before


def test_quote_pair_lookup_is_order_independent() -> None:
    engine, _ = _engine()
    quote = engine.quote("USDC", "ETH", Decimal("2500"))
    assert quote.amount_out > 0
    assert quote.amount_out < Decimal("1")


def test_quote_unknown_pair_raises() -> None:
    engine, _ = _engine()
    with pytest.raises(PoolNotFound):
        engine.quote("ETH", "WBTC", Decimal("1"))


@pytest.mark.parametrize("amount", ["0", "-1"])
def test_quote_rejects_non_positive_amount(amount: str) -> None:
    engine, _ = _engine()
    with pytest.raises(InvalidInput):
        engine.quote("ETH", "USDC", Decimal(amount))


def test_quote_rejects_identical_tokens() -> None:
    engine, _ = _engine()
    with pytest.raises(InvalidInput):
        engine.quote("ETH", "ETH", Decimal("1"))


@pytest.mark.parametrize("amount", ["0.000001", "1", "1000", "10000000"])
def test_parity_pool_output_is_below_input(amount: str) -> None:
    engine, _ = _engine()
    amount_in = Decimal(amount)
    quote = engine.quote("USDC", "USDT", amount_in)
    assert Decimal("0") <= quote.amount_out < amount_in
    assert quote.fee == amount_in * Decimal("0.0005")


def test_output_is_worse_than_spot_price() -> None:
    pool = Pool(
        pool_id=1,
        token_a="ETH",
        token_b="USDC",
        reserve_a=Decimal("2000"),
        reserve_b=Decimal("5000000"),
        liquidity=Decimal("10000000"),
        fee_rate=Decimal("0.003"),
    )
    quote = compute_quote(pool, "ETH", "USDC", Decimal("1"))
    assert quote.amount_out < Decimal("2500")
    assert quote.amount_out < pool.reserve_b
    assert quote.price_impact > 0


def test_zero_fee_pool_matches_constant_product() -> None:
    pool = Pool(
        pool_id=9,
        token_a="A",
        token_b="B",
        reserve_a=Decimal("100"),
        reserve_b=Decimal("100"),
        liquidity=Decimal("200"),
        fee_rate=Decimal("0"),
    )
    quote = compute_quote(pool, "A", "B", Decimal("100"))
    assert quote.amount_out == Decimal("50")
    assert quote.price_impact == Decimal("50")


def test_swap_moves_reserves_and_never_decreases_k() -> None:
    engine, store = _engine()
    before = store.get_pool("ETH", "USDC")
    assert before is not None

    trade = engine.swap("alice", "ETH", "USDC", Decimal("10"))

    after = store.get_pool("ETH", "USDC")
    assert after is not None
    assert after.reserve_a == before.reserve_a + Decimal("10")
    assert after.reserve_b == before.reserve_b - trade.amount_out
    assert after.reserve_a * after.reserve_b >= before.reserve_a * before.reserve_b
    assert after.version == before.version + 1
    assert engine.trades_for("alice") == [trade]
    assert trade.fee == Decimal("0.03")


def test_swap_slippage_rejection_leaves_pool_untouched() -> None:
    engine, store = _engine()
    before = store.get_pool("ETH", "USDC")
    with pytest.raises(SlippageExceeded):
        engine.swap("alice", "ETH", "USDC", Decimal("1"), min_amount_out=Decimal("2500"))
    assert store.get_pool("ETH", "USDC") == before
    assert engine.trades_for("alice") == []


def test_swap_retries_once_on_conflict(monkeypatch: pytest.MonkeyPatch) -> None:
    engine, store = _engine()
    original = store.put_pool
    calls = {"count": 0}

    def _flaky_put(pool: Pool) -> Pool:
        calls["count"] += 1
        if calls["count"] == 1:
            raise ConcurrencyConflict("stale_version")
        return original(pool)

    monkeypatch.setattr(store, "put_pool", _flaky_put)
    engine.swap("bob", "USDC", "USDT", Decimal("100"))
    assert calls["count"] == 2
    assert len(engine.trades_for("bob")) == 1


def test_swap_gives_up_after_second_conflict(monkeypatch: pytest.MonkeyPatch) -> None:
    engine, store = _engine()
    calls = {"count": 0}

    def _always_stale(pool: Pool) -> Pool:
        calls["count"] += 1
        raise ConcurrencyConflict("stale_version")

    monkeypatch.setattr(store, "put_pool", _always_stale)
    with pytest.raises(ConcurrencyConflict):
        engine.swap("bob", "USDC", "USDT", Decimal("100"))
    assert calls["count"] == 2
    assert engine.trades_for("bob") == []
