"""Explicit startup seeding of the demo store."""

from __future__ import annotations

from decimal import Decimal

from defihub.config import Settings
from defihub.store.memory import MemoryStore
from defihub.types import Chain, Market, PerpMarket, Pool, StakingPool

D = Decimal

REFERENCE_PRICES: dict[str, Decimal] = {
    "ETH": D("2500"),
    "BTC": D("45000"),
    "WBTC": D("45000"),
    "SOL": D("100"),
    "USDC": D("1"),
    "USDT": D("1"),
    "DAI": D("1"),
}

# (token_a, token_b, liquidity in USD, fee rate)
_POOLS = [
    ("ETH", "USDC", "10000000", "0.003"),
    ("ETH", "USDT", "8000000", "0.003"),
    ("ETH", "DAI", "6000000", "0.003"),
    ("USDC", "USDT", "15000000", "0.0005"),
]

# (asset, supplied, borrowed, supply apy, borrow apy, collateral factor)
_MARKETS = [
    ("ETH", "50000000", "30000000", "3.5", "5.2", "0.80"),
    ("USDC", "100000000", "60000000", "4.2", "6.8", "0.85"),
    ("USDT", "80000000", "50000000", "4.0", "6.5", "0.85"),
    ("DAI", "70000000", "40000000", "3.8", "6.2", "0.85"),
    ("WBTC", "30000000", "15000000", "2.5", "4.0", "0.75"),
]

# (name, token, reward token, apy, tvl, min stake, lock days, auto compound)
_STAKING_POOLS = [
    ("ETH Flexible Pool", "ETH", "DFH", "5.5", "5000000", "0.1", 0, False),
    ("ETH 30-Day Locked", "ETH", "DFH", "9.2", "10000000", "0.5", 30, False),
    ("ETH Auto-Compound", "ETH", "ETH", "12.8", "15000000", "1.0", 90, True),
    ("USDC Stable", "USDC", "DFH", "8.5", "20000000", "100", 0, False),
    ("LP Farming", "ETH-USDC-LP", "DFH", "45.0", "8000000", "10", 60, False),
    ("DFH Governance", "DFH", "DFH", "25.0", "3000000", "100", 180, True),
]

# (symbol, index, mark, funding rate, open interest, max leverage)
_PERP_MARKETS = [
    ("ETH-PERP", "2500.00", "2501.20", "0.01", "50000000", "50"),
    ("BTC-PERP", "45000.00", "45050.00", "0.008", "150000000", "100"),
    ("SOL-PERP", "100.00", "100.50", "0.02", "20000000", None),
]

_CHAINS = [
    (1, "Ethereum", "ETH"),
    (137, "Polygon", "MATIC"),
    (42161, "Arbitrum", "ETH"),
    (10, "Optimism", "ETH"),
    (56, "BSC", "BNB"),
    (43114, "Avalanche", "AVAX"),
]

# Liquidation threshold stays above the collateral factor.
_LIQUIDATION_THRESHOLD = D("0.85")
_STABLE_LIQUIDATION_THRESHOLD = D("0.90")


def build_store(settings: Settings) -> MemoryStore:
    """Create and seed a store. Called once at process start."""
    store = MemoryStore()
    seed_store(store, settings)
    return store


def seed_store(store: MemoryStore, settings: Settings) -> None:
    for asset, price in REFERENCE_PRICES.items():
        store.set_price(asset, price)

    for pool_id, (token_a, token_b, liquidity, fee_rate) in enumerate(_POOLS, start=1):
        half = D(liquidity) / 2
        store.add_pool(
            Pool(
                pool_id=pool_id,
                token_a=token_a,
                token_b=token_b,
                reserve_a=half / REFERENCE_PRICES[token_a],
                reserve_b=half / REFERENCE_PRICES[token_b],
                liquidity=D(liquidity),
                fee_rate=D(fee_rate),
            )
        )

    for asset, supplied, borrowed, supply_apy, borrow_apy, cf in _MARKETS:
        store.add_market(
            Market(
                asset=asset,
                total_supplied=D(supplied),
                total_borrowed=D(borrowed),
                supply_apy=D(supply_apy),
                borrow_apy=D(borrow_apy),
                collateral_factor=D(cf),
                liquidation_threshold=(
                    _STABLE_LIQUIDATION_THRESHOLD
                    if D(cf) >= _LIQUIDATION_THRESHOLD
                    else _LIQUIDATION_THRESHOLD
                ),
            )
        )

    for pool_id, row in enumerate(_STAKING_POOLS, start=1):
        name, token, reward_token, apy, tvl, min_stake, lock_days, compound = row
        store.add_staking_pool(
            StakingPool(
                pool_id=pool_id,
                name=name,
                token=token,
                reward_token=reward_token,
                apy=D(apy),
                tvl=D(tvl),
                min_stake=D(min_stake),
                lock_period_days=lock_days,
                auto_compound=compound,
            )
        )

    for symbol, index_price, mark_price, funding, oi, max_leverage in _PERP_MARKETS:
        store.add_perp_market(
            PerpMarket(
                symbol=symbol,
                index_price=D(index_price),
                mark_price=D(mark_price),
                funding_rate=D(funding),
                open_interest=D(oi),
                max_leverage=(
                    D(max_leverage) if max_leverage is not None else settings.default_max_leverage
                ),
            )
        )

    for chain_id, name, native_token in _CHAINS:
        store.add_chain(Chain(chain_id=chain_id, name=name, native_token=native_token))
