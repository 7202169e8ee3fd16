"""Wire schemas: numeric-string requests in, fixed-precision strings out."""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel

from defihub.analytics.service import AssetPrice, ProtocolStats, UserSummary
from defihub.lending.engine import utilization
from defihub.perps.engine import CloseReceipt
from defihub.staking.engine import RewardsView, UnstakeReceipt
from defihub.types import Loan, Market, PerpPosition, Pool, Position, Quote, StakingPool, Trade
from defihub.utils.decimals import (
    AMOUNT_DP,
    PERCENT_DP,
    PRICE_DP,
    TOKEN_DP,
    format_fixed,
    to_decimal,
)


def _wire_decimal(value: Any) -> Any:
    """Floats lose precision on the wire; only strings and ints are accepted."""
    if isinstance(value, (float, bool)):
        raise ValueError("float_not_allowed: send decimals as strings")
    if isinstance(value, (str, int, Decimal)):
        return to_decimal(value)
    return value


DecimalStr = Annotated[Decimal, BeforeValidator(_wire_decimal)]


class _WireModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ==================== Requests ====================


class QuoteRequest(_WireModel):
    token_in: str
    token_out: str
    amount_in: DecimalStr


class SwapRequest(QuoteRequest):
    user_address: str
    min_amount_out: DecimalStr | None = None


class SupplyRequest(_WireModel):
    user_address: str
    asset: str
    amount: DecimalStr


class BorrowRequest(SupplyRequest):
    collateral_asset: str


class StakeRequest(_WireModel):
    pool_id: int
    user_address: str
    amount: DecimalStr


class OpenPositionRequest(_WireModel):
    user_address: str
    symbol: str
    size: DecimalStr
    side: str
    leverage: DecimalStr
    margin: DecimalStr


class BridgeTransferRequest(_WireModel):
    user_address: str
    from_chain: int
    to_chain: int
    token: str
    amount: DecimalStr


# ==================== Responses ====================


class QuoteResponse(_WireModel):
    amount_out: str
    fee: str
    amount_after_fee: str
    price_impact: str
    route: list[str]

    @classmethod
    def from_quote(cls, quote: Quote) -> "QuoteResponse":
        return cls(
            amount_out=format_fixed(quote.amount_out, AMOUNT_DP),
            fee=format_fixed(quote.fee, AMOUNT_DP),
            amount_after_fee=format_fixed(quote.amount_after_fee, AMOUNT_DP),
            price_impact=format_fixed(quote.price_impact, PERCENT_DP),
            route=list(quote.route),
        )


class PoolResponse(_WireModel):
    pool_id: int
    token_a: str
    token_b: str
    reserve_a: str
    reserve_b: str
    liquidity: str
    fee_rate: str

    @classmethod
    def from_pool(cls, pool: Pool) -> "PoolResponse":
        return cls(
            pool_id=pool.pool_id,
            token_a=pool.token_a,
            token_b=pool.token_b,
            reserve_a=format_fixed(pool.reserve_a, AMOUNT_DP),
            reserve_b=format_fixed(pool.reserve_b, AMOUNT_DP),
            liquidity=format_fixed(pool.liquidity, PERCENT_DP),
            fee_rate=f"{pool.fee_rate:f}",
        )


class TradeResponse(_WireModel):
    trade_id: int
    amount_out: str
    price: str
    status: str

    @classmethod
    def from_trade(cls, trade: Trade) -> "TradeResponse":
        return cls(
            trade_id=trade.trade_id,
            amount_out=format_fixed(trade.amount_out, AMOUNT_DP),
            price=format_fixed(trade.price, PRICE_DP),
            status=trade.status,
        )


class MarketResponse(_WireModel):
    asset: str
    total_supplied: str
    total_borrowed: str
    supply_apy: str
    borrow_apy: str
    collateral_factor: str
    utilization: str

    @classmethod
    def from_market(cls, market: Market) -> "MarketResponse":
        return cls(
            asset=market.asset,
            total_supplied=format_fixed(market.total_supplied, AMOUNT_DP),
            total_borrowed=format_fixed(market.total_borrowed, AMOUNT_DP),
            supply_apy=f"{market.supply_apy:f}",
            borrow_apy=f"{market.borrow_apy:f}",
            collateral_factor=f"{market.collateral_factor:f}",
            utilization=format_fixed(utilization(market), PERCENT_DP),
        )


class PositionResponse(_WireModel):
    asset: str
    supplied: str
    borrowed: str
    health_factor: str | None

    @classmethod
    def from_position(cls, position: Position) -> "PositionResponse":
        return cls(
            asset=position.asset,
            supplied=format_fixed(position.supplied, AMOUNT_DP),
            borrowed=format_fixed(position.borrowed, AMOUNT_DP),
            health_factor=format_health(position.health_factor),
        )


class LoanResponse(_WireModel):
    loan_id: int
    asset: str
    amount: str
    collateral_asset: str
    collateral_amount: str
    status: str

    @classmethod
    def from_loan(cls, loan: Loan) -> "LoanResponse":
        return cls(
            loan_id=loan.loan_id,
            asset=loan.asset,
            amount=format_fixed(loan.amount, AMOUNT_DP),
            collateral_asset=loan.collateral_asset,
            collateral_amount=format_fixed(loan.collateral_amount, TOKEN_DP),
            status=loan.status,
        )


class StakingPoolResponse(_WireModel):
    pool_id: int
    name: str
    token: str
    reward_token: str
    apy: str
    tvl: str
    min_stake: str
    lock_period: int
    auto_compound: bool

    @classmethod
    def from_pool(cls, pool: StakingPool) -> "StakingPoolResponse":
        return cls(
            pool_id=pool.pool_id,
            name=pool.name,
            token=pool.token,
            reward_token=pool.reward_token,
            apy=f"{pool.apy:f}",
            tvl=format_fixed(pool.tvl, AMOUNT_DP),
            min_stake=f"{pool.min_stake:f}",
            lock_period=pool.lock_period_days,
            auto_compound=pool.auto_compound,
        )


class RewardsResponse(_WireModel):
    stake_id: int
    rewards: str
    reward_token: str
    days_staked: int

    @classmethod
    def from_view(cls, view: RewardsView) -> "RewardsResponse":
        return cls(
            stake_id=view.stake_id,
            rewards=format_fixed(view.rewards, TOKEN_DP),
            reward_token=view.reward_token,
            days_staked=view.days_staked,
        )


class UnstakeResponse(_WireModel):
    stake_id: int
    principal: str
    rewards: str
    reward_token: str
    payout: str

    @classmethod
    def from_receipt(cls, receipt: UnstakeReceipt) -> "UnstakeResponse":
        return cls(
            stake_id=receipt.stake_id,
            principal=format_fixed(receipt.principal, TOKEN_DP),
            rewards=format_fixed(receipt.rewards, TOKEN_DP),
            reward_token=receipt.reward_token,
            payout=format_fixed(receipt.payout, TOKEN_DP),
        )


class PerpPositionResponse(_WireModel):
    position_id: int
    symbol: str
    side: str
    size: str
    entry_price: str
    leverage: str
    margin: str
    liquidation_price: str
    status: str
    unrealized_pnl: str | None = None

    @classmethod
    def from_position(
        cls,
        position: PerpPosition,
        pnl: Decimal | None = None,
    ) -> "PerpPositionResponse":
        return cls(
            position_id=position.position_id,
            symbol=position.symbol,
            side=position.side,
            size=f"{position.size:f}",
            entry_price=format_fixed(position.entry_price, PRICE_DP),
            leverage=f"{position.leverage:f}",
            margin=format_fixed(position.margin, AMOUNT_DP),
            liquidation_price=format_fixed(position.liquidation_price, PRICE_DP),
            status=position.status,
            unrealized_pnl=format_fixed(pnl, AMOUNT_DP) if pnl is not None else None,
        )


class CloseResponse(_WireModel):
    position_id: int
    exit_price: str
    realized_pnl: str
    margin_returned: str

    @classmethod
    def from_receipt(cls, receipt: CloseReceipt) -> "CloseResponse":
        return cls(
            position_id=receipt.position.position_id,
            exit_price=format_fixed(receipt.exit_price, PRICE_DP),
            realized_pnl=format_fixed(receipt.realized_pnl, AMOUNT_DP),
            margin_returned=format_fixed(receipt.margin_returned, AMOUNT_DP),
        )


class PriceResponse(_WireModel):
    asset: str
    price: str

    @classmethod
    def from_price(cls, price: AssetPrice) -> "PriceResponse":
        return cls(asset=price.asset, price=format_fixed(price.price, PRICE_DP))


class ProtocolStatsResponse(_WireModel):
    tvl: str
    amm_liquidity: str
    lending_liquidity: str
    staking_tvl: str
    volume: str
    trades_count: int
    assets_tracked: int
    unpriced_tokens: list[str]

    @classmethod
    def from_stats(cls, stats: ProtocolStats) -> "ProtocolStatsResponse":
        return cls(
            tvl=format_fixed(stats.tvl, 2),
            amm_liquidity=format_fixed(stats.amm_liquidity, 2),
            lending_liquidity=format_fixed(stats.lending_liquidity, 2),
            staking_tvl=format_fixed(stats.staking_tvl, 2),
            volume=format_fixed(stats.volume, 2),
            trades_count=stats.trades_count,
            assets_tracked=stats.assets_tracked,
            unpriced_tokens=list(stats.unpriced_tokens),
        )


class UserSummaryResponse(_WireModel):
    user_address: str
    supplied_value: str
    borrowed_value: str
    staked_value: str
    perp_margin: str
    unrealized_pnl: str
    net_value: str
    trades_count: int
    active_loans: int
    open_perp_positions: int
    pending_transfers: int

    @classmethod
    def from_summary(cls, summary: UserSummary) -> "UserSummaryResponse":
        return cls(
            user_address=summary.user,
            supplied_value=format_fixed(summary.supplied_value, AMOUNT_DP),
            borrowed_value=format_fixed(summary.borrowed_value, AMOUNT_DP),
            staked_value=format_fixed(summary.staked_value, AMOUNT_DP),
            perp_margin=format_fixed(summary.perp_margin, AMOUNT_DP),
            unrealized_pnl=format_fixed(summary.unrealized_pnl, AMOUNT_DP),
            net_value=format_fixed(summary.net_value, AMOUNT_DP),
            trades_count=summary.trades_count,
            active_loans=summary.active_loans,
            open_perp_positions=summary.open_perp_positions,
            pending_transfers=summary.pending_transfers,
        )


def format_health(value: Decimal) -> str | None:
    """Health factor at 2 dp; ``None`` when there is no debt."""
    if value.is_infinite():
        return None
    return format_fixed(value, PERCENT_DP)
