"""Read-only protocol analytics: price book, protocol stats, user summaries."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from defihub.config import Settings
from defihub.errors import AssetNotFound
from defihub.perps.engine import unrealized_pnl
from defihub.store.base import Store
from defihub.utils.decimals import ZERO, precise
from defihub.utils.logging import get_logger


@dataclass(slots=True)
class AssetPrice:
    asset: str
    price: Decimal


@dataclass(slots=True)
class ProtocolStats:
    """Protocol-wide totals in USD at reference prices.

    Lending counts net liquidity (supplied minus borrowed). Staking pools
    whose token has no reference price are listed in ``unpriced_tokens``
    instead of being valued.
    """

    amm_liquidity: Decimal
    lending_liquidity: Decimal
    staking_tvl: Decimal
    tvl: Decimal
    volume: Decimal
    trades_count: int
    assets_tracked: int
    unpriced_tokens: list[str] = field(default_factory=list)


@dataclass(slots=True)
class UserSummary:
    """One user's holdings valued in USD at reference prices."""

    user: str
    supplied_value: Decimal
    borrowed_value: Decimal
    staked_value: Decimal
    perp_margin: Decimal
    unrealized_pnl: Decimal
    net_value: Decimal
    trades_count: int
    active_loans: int
    open_perp_positions: int
    pending_transfers: int
    unpriced_tokens: list[str] = field(default_factory=list)


class AnalyticsService:
    """Aggregates over the store. Never mutates state."""

    def __init__(self, store: Store, settings: Settings) -> None:
        self._store = store
        self._settings = settings
        self._logger = get_logger("defihub.analytics.service")

    def list_prices(self) -> list[AssetPrice]:
        """Reference prices ordered by asset symbol."""
        return [
            AssetPrice(asset=asset, price=price)
            for asset, price in sorted(self._store.list_prices().items())
        ]

    def get_price(self, asset: str) -> AssetPrice:
        price = self._store.get_price(asset)
        if price is None:
            raise AssetNotFound(f"asset_not_found: {asset}")
        return AssetPrice(asset=asset, price=price)

    def protocol_stats(self) -> ProtocolStats:
        prices = self._store.list_prices()
        unpriced: set[str] = set()

        with precise():
            amm_liquidity = ZERO
            for pool in self._store.list_pools():
                amm_liquidity += _value(prices, pool.token_a, pool.reserve_a, unpriced)
                amm_liquidity += _value(prices, pool.token_b, pool.reserve_b, unpriced)

            lending_liquidity = ZERO
            for market in self._store.list_markets():
                available = market.total_supplied - market.total_borrowed
                lending_liquidity += _value(prices, market.asset, available, unpriced)

            staking_tvl = ZERO
            for pool in self._store.list_staking_pools():
                staking_tvl += _value(prices, pool.token, pool.tvl, unpriced)

            trades = self._store.list_trades()
            volume = sum(
                (_value(prices, t.token_in, t.amount_in, unpriced) for t in trades),
                ZERO,
            )
            tvl = amm_liquidity + lending_liquidity + staking_tvl

        if unpriced:
            self._logger.debug("unpriced_tokens_skipped", tokens=sorted(unpriced))
        return ProtocolStats(
            amm_liquidity=amm_liquidity,
            lending_liquidity=lending_liquidity,
            staking_tvl=staking_tvl,
            tvl=tvl,
            volume=volume,
            trades_count=len(trades),
            assets_tracked=len(prices),
            unpriced_tokens=sorted(unpriced),
        )

    def user_summary(self, user: str) -> UserSummary:
        """Value everything ``user`` holds; unknown users get an all-zero summary."""
        holdings = self._store.list_by_user(user)
        prices = self._store.list_prices()
        unpriced: set[str] = set()

        with precise():
            supplied_value = ZERO
            borrowed_value = ZERO
            for position in holdings.positions:
                supplied_value += _value(prices, position.asset, position.supplied, unpriced)
                borrowed_value += _value(prices, position.asset, position.borrowed, unpriced)

            staked_value = ZERO
            for stake in holdings.stakes:
                pool = self._store.get_staking_pool(stake.pool_id)
                if pool is not None:
                    staked_value += _value(prices, pool.token, stake.amount, unpriced)

            perp_margin = ZERO
            pnl = ZERO
            open_positions = [p for p in holdings.perp_positions if p.status == "open"]
            for position in open_positions:
                market = self._store.get_perp_market(position.symbol)
                perp_margin += position.margin
                if market is not None:
                    pnl += unrealized_pnl(position, market.mark_price)

            net_value = supplied_value + staked_value + perp_margin + pnl - borrowed_value

        return UserSummary(
            user=user,
            supplied_value=supplied_value,
            borrowed_value=borrowed_value,
            staked_value=staked_value,
            perp_margin=perp_margin,
            unrealized_pnl=pnl,
            net_value=net_value,
            trades_count=len(holdings.trades),
            active_loans=sum(1 for loan in holdings.loans if loan.status == "active"),
            open_perp_positions=len(open_positions),
            pending_transfers=sum(1 for t in holdings.transfers if t.status == "processing"),
            unpriced_tokens=sorted(unpriced),
        )


def _value(
    prices: dict[str, Decimal],
    asset: str,
    amount: Decimal,
    unpriced: set[str],
) -> Decimal:
    price = prices.get(asset)
    if price is None:
        if amount:
            unpriced.add(asset)
        return ZERO
    return amount * price
