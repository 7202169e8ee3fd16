"""Typed accessor contract the engines depend on."""

from __future__ import annotations

from decimal import Decimal
from typing import ContextManager, Protocol

from defihub.types import (
    BridgeTransfer,
    Chain,
    Loan,
    Market,
    PerpMarket,
    PerpPosition,
    Pool,
    Position,
    Stake,
    StakingPool,
    Trade,
    UserHoldings,
)


class Store(Protocol):
    """Persistence interface.

    ``put_*`` writes of shared pools/markets are compare-and-set on
    ``version`` and raise ``ConcurrencyConflict`` when the caller's copy is
    stale. ``append_*`` ignores the id on the passed record and returns the
    stored record with its assigned id.
    """

    def lock(self, *keys: str) -> ContextManager[None]:
        """Serialize mutations on the given keys."""

    # AMM
    def get_pool(self, token_in: str, token_out: str) -> Pool | None: ...
    def list_pools(self) -> list[Pool]: ...
    def put_pool(self, pool: Pool) -> Pool: ...
    def append_trade(self, trade: Trade) -> Trade: ...
    def list_trades(self, user: str | None = None) -> list[Trade]: ...

    # Lending
    def get_market(self, asset: str) -> Market | None: ...
    def list_markets(self) -> list[Market]: ...
    def put_markets(self, *markets: Market) -> list[Market]: ...
    def get_position(self, user: str, asset: str) -> Position | None: ...
    def upsert_position(self, position: Position) -> Position: ...
    def list_positions(self, user: str) -> list[Position]: ...
    def append_loan(self, loan: Loan) -> Loan: ...
    def get_loan(self, loan_id: int) -> Loan | None: ...
    def update_loan(self, loan: Loan) -> Loan: ...
    def list_loans(self, user: str | None = None, status: str | None = None) -> list[Loan]: ...

    # Staking
    def get_staking_pool(self, pool_id: int) -> StakingPool | None: ...
    def list_staking_pools(self) -> list[StakingPool]: ...
    def put_staking_pool(self, pool: StakingPool) -> StakingPool: ...
    def append_stake(self, stake: Stake) -> Stake: ...
    def get_stake(self, stake_id: int) -> Stake | None: ...
    def remove_stake(self, stake_id: int) -> None: ...
    def list_stakes(self, user: str) -> list[Stake]: ...

    # Perpetuals
    def get_perp_market(self, symbol: str) -> PerpMarket | None: ...
    def list_perp_markets(self) -> list[PerpMarket]: ...
    def put_perp_market(self, market: PerpMarket) -> PerpMarket: ...
    def append_perp_position(self, position: PerpPosition) -> PerpPosition: ...
    def get_perp_position(self, position_id: int) -> PerpPosition | None: ...
    def update_perp_position(self, position: PerpPosition) -> PerpPosition: ...
    def list_perp_positions(
        self,
        *,
        user: str | None = None,
        symbol: str | None = None,
        status: str | None = None,
    ) -> list[PerpPosition]: ...

    # Bridge
    def get_chain(self, chain_id: int) -> Chain | None: ...
    def list_chains(self) -> list[Chain]: ...
    def append_transfer(self, transfer: BridgeTransfer) -> BridgeTransfer: ...
    def get_transfer(self, transfer_id: int) -> BridgeTransfer | None: ...
    def update_transfer(self, transfer: BridgeTransfer) -> BridgeTransfer: ...
    def list_transfers(self, user: str) -> list[BridgeTransfer]: ...

    # Reference prices
    def get_price(self, asset: str) -> Decimal | None: ...
    def set_price(self, asset: str, price: Decimal) -> None: ...
    def list_prices(self) -> dict[str, Decimal]: ...

    def list_by_user(self, user: str) -> UserHoldings: ...
