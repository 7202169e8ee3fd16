"""In-process store implementing the ``Store`` contract."""

from __future__ import annotations

import itertools
import threading
import weakref
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import replace
from decimal import Decimal
from typing import TypeVar

from defihub.errors import ConcurrencyConflict
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

_V = TypeVar("_V", Pool, Market, StakingPool, PerpMarket)


class _KeyLock:
    """Weak-referenceable holder for one key's RLock."""

    __slots__ = ("rlock", "__weakref__")

    def __init__(self) -> None:
        self.rlock = threading.RLock()


class MemoryStore:
    """Single-process store. One instance is created per service at startup."""

    def __init__(self) -> None:
        self._data_lock = threading.RLock()
        self._key_locks: weakref.WeakValueDictionary[str, _KeyLock] = (
            weakref.WeakValueDictionary()
        )

        self._pools: dict[int, Pool] = {}
        self._pool_index: dict[frozenset[str], int] = {}
        self._trades: list[Trade] = []
        self._markets: dict[str, Market] = {}
        self._positions: dict[tuple[str, str], Position] = {}
        self._loans: dict[int, Loan] = {}
        self._staking_pools: dict[int, StakingPool] = {}
        self._stakes: dict[int, Stake] = {}
        self._perp_markets: dict[str, PerpMarket] = {}
        self._perp_positions: dict[int, PerpPosition] = {}
        self._chains: dict[int, Chain] = {}
        self._transfers: dict[int, BridgeTransfer] = {}
        self._prices: dict[str, Decimal] = {}

        self._trade_ids = itertools.count(1)
        self._loan_ids = itertools.count(1)
        self._stake_ids = itertools.count(1)
        self._perp_ids = itertools.count(1)
        self._transfer_ids = itertools.count(1)

    @contextmanager
    def lock(self, *keys: str) -> Iterator[None]:
        """Acquire per-key locks in sorted order.

        The key table holds locks weakly, so an entry lives only while some
        caller holds or waits on it.
        """
        with self._data_lock:
            locks = []
            for key in sorted(set(keys)):
                key_lock = self._key_locks.get(key)
                if key_lock is None:
                    key_lock = _KeyLock()
                    self._key_locks[key] = key_lock
                locks.append(key_lock)
        with ExitStack() as stack:
            for key_lock in locks:
                stack.enter_context(key_lock.rlock)
            yield

    def lock_count(self) -> int:
        """Number of key locks currently alive."""
        with self._data_lock:
            return len(self._key_locks)


    # ------------------------------------------------------------------
    # Seeding (not part of the Store contract)
    # ------------------------------------------------------------------

    def add_pool(self, pool: Pool) -> None:
        with self._data_lock:
            self._pools[pool.pool_id] = pool
            self._pool_index[frozenset((pool.token_a, pool.token_b))] = pool.pool_id

    def add_market(self, market: Market) -> None:
        with self._data_lock:
            self._markets[market.asset] = market

    def add_staking_pool(self, pool: StakingPool) -> None:
        with self._data_lock:
            self._staking_pools[pool.pool_id] = pool

    def add_perp_market(self, market: PerpMarket) -> None:
        with self._data_lock:
            self._perp_markets[market.symbol] = market

    def add_chain(self, chain: Chain) -> None:
        with self._data_lock:
            self._chains[chain.chain_id] = chain

    # ------------------------------------------------------------------
    # AMM
    # ------------------------------------------------------------------

    def get_pool(self, token_in: str, token_out: str) -> Pool | None:
        with self._data_lock:
            pool_id = self._pool_index.get(frozenset((token_in, token_out)))
            if pool_id is None or token_in == token_out:
                return None
            return self._pools[pool_id]

    def list_pools(self) -> list[Pool]:
        with self._data_lock:
            return sorted(self._pools.values(), key=lambda p: p.pool_id)

    def put_pool(self, pool: Pool) -> Pool:
        with self._data_lock:
            stored = self._compare_and_set(self._pools, pool.pool_id, pool)
            return stored

    def append_trade(self, trade: Trade) -> Trade:
        with self._data_lock:
            stored = replace(trade, trade_id=next(self._trade_ids))
            self._trades.append(stored)
            return stored

    def list_trades(self, user: str | None = None) -> list[Trade]:
        with self._data_lock:
            rows = [t for t in self._trades if user is None or t.user == user]
        return sorted(rows, key=lambda t: (t.created_at, t.trade_id), reverse=True)

    # ------------------------------------------------------------------
    # Lending
    # ------------------------------------------------------------------

    def get_market(self, asset: str) -> Market | None:
        with self._data_lock:
            return self._markets.get(asset)

    def list_markets(self) -> list[Market]:
        with self._data_lock:
            return list(self._markets.values())

    def put_markets(self, *markets: Market) -> list[Market]:
        """Write several markets atomically: all versions are checked first."""
        with self._data_lock:
            for market in markets:
                self._check_version(self._markets, market.asset, market)
            return [self._compare_and_set(self._markets, m.asset, m) for m in markets]

    def get_position(self, user: str, asset: str) -> Position | None:
        with self._data_lock:
            return self._positions.get((user, asset))

    def upsert_position(self, position: Position) -> Position:
        with self._data_lock:
            self._positions[(position.user, position.asset)] = position
            return position

    def list_positions(self, user: str) -> list[Position]:
        with self._data_lock:
            return [p for (owner, _), p in self._positions.items() if owner == user]

    def append_loan(self, loan: Loan) -> Loan:
        with self._data_lock:
            stored = replace(loan, loan_id=next(self._loan_ids))
            self._loans[stored.loan_id] = stored
            return stored

    def get_loan(self, loan_id: int) -> Loan | None:
        with self._data_lock:
            return self._loans.get(loan_id)

    def update_loan(self, loan: Loan) -> Loan:
        with self._data_lock:
            self._loans[loan.loan_id] = loan
            return loan

    def list_loans(self, user: str | None = None, status: str | None = None) -> list[Loan]:
        with self._data_lock:
            return [
                loan
                for loan in self._loans.values()
                if (user is None or loan.user == user)
                and (status is None or loan.status == status)
            ]

    # ------------------------------------------------------------------
    # Staking
    # ------------------------------------------------------------------

    def get_staking_pool(self, pool_id: int) -> StakingPool | None:
        with self._data_lock:
            return self._staking_pools.get(pool_id)

    def list_staking_pools(self) -> list[StakingPool]:
        with self._data_lock:
            return list(self._staking_pools.values())

    def put_staking_pool(self, pool: StakingPool) -> StakingPool:
        with self._data_lock:
            return self._compare_and_set(self._staking_pools, pool.pool_id, pool)

    def append_stake(self, stake: Stake) -> Stake:
        with self._data_lock:
            stored = replace(stake, stake_id=next(self._stake_ids))
            self._stakes[stored.stake_id] = stored
            return stored

    def get_stake(self, stake_id: int) -> Stake | None:
        with self._data_lock:
            return self._stakes.get(stake_id)

    def remove_stake(self, stake_id: int) -> None:
        with self._data_lock:
            self._stakes.pop(stake_id, None)

    def list_stakes(self, user: str) -> list[Stake]:
        with self._data_lock:
            return [s for s in self._stakes.values() if s.user == user]

    # ------------------------------------------------------------------
    # Perpetuals
    # ------------------------------------------------------------------

    def get_perp_market(self, symbol: str) -> PerpMarket | None:
        with self._data_lock:
            return self._perp_markets.get(symbol)

    def list_perp_markets(self) -> list[PerpMarket]:
        with self._data_lock:
            return list(self._perp_markets.values())

    def put_perp_market(self, market: PerpMarket) -> PerpMarket:
        with self._data_lock:
            return self._compare_and_set(self._perp_markets, market.symbol, market)

    def append_perp_position(self, position: PerpPosition) -> PerpPosition:
        with self._data_lock:
            stored = replace(position, position_id=next(self._perp_ids))
            self._perp_positions[stored.position_id] = stored
            return stored

    def get_perp_position(self, position_id: int) -> PerpPosition | None:
        with self._data_lock:
            return self._perp_positions.get(position_id)

    def update_perp_position(self, position: PerpPosition) -> PerpPosition:
        with self._data_lock:
            self._perp_positions[position.position_id] = position
            return position

    def list_perp_positions(
        self,
        *,
        user: str | None = None,
        symbol: str | None = None,
        status: str | None = None,
    ) -> list[PerpPosition]:
        with self._data_lock:
            return [
                p
                for p in self._perp_positions.values()
                if (user is None or p.user == user)
                and (symbol is None or p.symbol == symbol)
                and (status is None or p.status == status)
            ]

    # ------------------------------------------------------------------
    # Bridge
    # ------------------------------------------------------------------

    def get_chain(self, chain_id: int) -> Chain | None:
        with self._data_lock:
            return self._chains.get(chain_id)

    def list_chains(self) -> list[Chain]:
        with self._data_lock:
            return [c for c in self._chains.values() if c.is_active]

    def append_transfer(self, transfer: BridgeTransfer) -> BridgeTransfer:
        with self._data_lock:
            stored = replace(transfer, transfer_id=next(self._transfer_ids))
            self._transfers[stored.transfer_id] = stored
            return stored

    def get_transfer(self, transfer_id: int) -> BridgeTransfer | None:
        with self._data_lock:
            return self._transfers.get(transfer_id)

    def update_transfer(self, transfer: BridgeTransfer) -> BridgeTransfer:
        with self._data_lock:
            self._transfers[transfer.transfer_id] = transfer
            return transfer

    def list_transfers(self, user: str) -> list[BridgeTransfer]:
        with self._data_lock:
            rows = [t for t in self._transfers.values() if t.user == user]
        return sorted(rows, key=lambda t: t.transfer_id, reverse=True)

    # ------------------------------------------------------------------
    # Prices and aggregate views
    # ------------------------------------------------------------------

    def get_price(self, asset: str) -> Decimal | None:
        with self._data_lock:
            return self._prices.get(asset)

    def set_price(self, asset: str, price: Decimal) -> None:
        if price <= 0:
            raise ValueError(f"price_must_be_positive: {asset}")
        with self._data_lock:
            self._prices[asset] = price

    def list_prices(self) -> dict[str, Decimal]:
        with self._data_lock:
            return dict(self._prices)

    def list_by_user(self, user: str) -> UserHoldings:
        return UserHoldings(
            user=user,
            positions=self.list_positions(user),
            loans=self.list_loans(user=user),
            stakes=self.list_stakes(user),
            trades=self.list_trades(user),
            perp_positions=self.list_perp_positions(user=user),
            transfers=self.list_transfers(user),
        )

    # ------------------------------------------------------------------

    @staticmethod
    def _check_version(table: dict, key: object, record: _V) -> None:
        current = table.get(key)
        if current is None:
            raise KeyError(key)
        if current.version != record.version:
            raise ConcurrencyConflict(
                f"stale_version: {key} expected={current.version} got={record.version}"
            )

    def _compare_and_set(self, table: dict, key: object, record: _V) -> _V:
        self._check_version(table, key, record)
        stored = replace(record, version=record.version + 1)
        table[key] = stored
        return stored
