"""Shared domain types. Records are immutable; updates go through ``replace``."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Literal

Side = Literal["long", "short"]
LoanStatus = Literal["active", "repaid", "liquidated"]
PerpStatus = Literal["open", "closed", "liquidated"]
TransferStatus = Literal["pending", "processing", "completed", "cancelled"]


@dataclass(frozen=True, slots=True)
class Pool:
    """Constant-product AMM pool."""

    pool_id: int
    token_a: str
    token_b: str
    reserve_a: Decimal
    reserve_b: Decimal
    liquidity: Decimal
    fee_rate: Decimal
    version: int = 0

    def reserves_for(self, token_in: str) -> tuple[Decimal, Decimal]:
        """Return (reserve_in, reserve_out) for a trade selling ``token_in``."""
        if token_in == self.token_a:
            return self.reserve_a, self.reserve_b
        return self.reserve_b, self.reserve_a


@dataclass(frozen=True, slots=True)
class Quote:
    """Side-effect free swap quote."""

    token_in: str
    token_out: str
    amount_in: Decimal
    fee: Decimal
    amount_after_fee: Decimal
    amount_out: Decimal
    price_impact: Decimal
    route: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class Trade:
    """Immutable executed swap record."""

    trade_id: int
    user: str
    token_in: str
    token_out: str
    amount_in: Decimal
    amount_out: Decimal
    fee: Decimal
    price: Decimal
    created_at: datetime
    status: str = "completed"


@dataclass(frozen=True, slots=True)
class Market:
    """Lending market for one asset."""

    asset: str
    total_supplied: Decimal
    total_borrowed: Decimal
    supply_apy: Decimal
    borrow_apy: Decimal
    collateral_factor: Decimal
    liquidation_threshold: Decimal = Decimal("0.85")
    version: int = 0


@dataclass(frozen=True, slots=True)
class Position:
    """Lending position owned by one (user, asset) pair."""

    user: str
    asset: str
    supplied: Decimal = Decimal("0")
    borrowed: Decimal = Decimal("0")
    health_factor: Decimal = Decimal("Infinity")


@dataclass(frozen=True, slots=True)
class Loan:
    """Collateralized loan. Terminal once repaid or liquidated."""

    loan_id: int
    user: str
    asset: str
    amount: Decimal
    collateral_asset: str
    collateral_amount: Decimal
    interest_rate: Decimal
    created_at: datetime
    status: LoanStatus = "active"
    closed_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class StakingPool:
    """Staking pool definition."""

    pool_id: int
    name: str
    token: str
    reward_token: str
    apy: Decimal
    tvl: Decimal
    min_stake: Decimal
    lock_period_days: int
    auto_compound: bool = False
    version: int = 0


@dataclass(frozen=True, slots=True)
class Stake:
    """Stake metadata. Rewards are derived on read."""

    stake_id: int
    pool_id: int
    user: str
    amount: Decimal
    staked_at: datetime
    unlock_at: datetime


@dataclass(frozen=True, slots=True)
class PerpMarket:
    """Perpetual futures market."""

    symbol: str
    index_price: Decimal
    mark_price: Decimal
    funding_rate: Decimal
    open_interest: Decimal
    max_leverage: Decimal
    version: int = 0


@dataclass(frozen=True, slots=True)
class PerpPosition:
    """Leveraged perpetual position. Liquidation price is fixed at entry."""

    position_id: int
    user: str
    symbol: str
    size: Decimal
    side: Side
    entry_price: Decimal
    leverage: Decimal
    margin: Decimal
    liquidation_price: Decimal
    opened_at: datetime
    status: PerpStatus = "open"
    closed_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class Chain:
    """Bridge destination chain."""

    chain_id: int
    name: str
    native_token: str
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class BridgeQuote:
    """Bridge transfer quote."""

    from_chain: int
    to_chain: int
    token: str
    amount: Decimal
    fee: Decimal
    amount_out: Decimal


@dataclass(frozen=True, slots=True)
class BridgeTransfer:
    """Cross-chain transfer record."""

    transfer_id: int
    user: str
    from_chain: int
    to_chain: int
    token: str
    amount: Decimal
    fee: Decimal
    created_at: datetime
    status: TransferStatus = "pending"
    completed_at: datetime | None = None


@dataclass(slots=True)
class UserHoldings:
    """Everything one user owns across the store."""

    user: str
    positions: list[Position] = field(default_factory=list)
    loans: list[Loan] = field(default_factory=list)
    stakes: list[Stake] = field(default_factory=list)
    trades: list[Trade] = field(default_factory=list)
    perp_positions: list[PerpPosition] = field(default_factory=list)
    transfers: list[BridgeTransfer] = field(default_factory=list)
