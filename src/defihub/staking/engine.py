"""Staking pools with lazy, time-proportional reward accrual."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from defihub.config import Settings
from defihub.errors import InvalidInput, NotFound, StakeLocked, StakeNotFound
from defihub.journal.store import JournalStore
from defihub.store.base import Store
from defihub.types import Stake, StakingPool
from defihub.utils.decimals import DAYS_PER_YEAR, HUNDRED, ZERO, precise, truncate
from defihub.utils.logging import get_logger, log_position_event
from defihub.utils.retry import retry_on_conflict

_ONE_DAY = timedelta(days=1)


def days_staked(staked_at: datetime, as_of: datetime) -> int:
    """Whole days elapsed, never negative."""
    return max(0, (as_of - staked_at) // _ONE_DAY)


def daily_rate(apy: Decimal) -> Decimal:
    with precise():
        return apy / HUNDRED / DAYS_PER_YEAR


def accrued_rewards(stake: Stake, pool: StakingPool, as_of: datetime) -> Decimal:
    """Rewards owed on ``stake`` at ``as_of``.

    Each day's reward is truncated to 18 dp, so accrual is exactly linear in
    days and never rounds up. Auto-compounding pools fold every day's reward
    into the principal before the next day accrues.
    """
    days = days_staked(stake.staked_at, as_of)
    rate = daily_rate(pool.apy)
    with precise():
        if not pool.auto_compound:
            # Undershoots the one-shot amount * rate * days by less than days * 1e-18:
            # 1000 at 9.2% for 30 days is 7.561643835616438350, not ...356.
            return truncate(stake.amount * rate) * days
        principal = stake.amount
        for _ in range(days):
            principal += truncate(principal * rate)
        return principal - stake.amount


@dataclass(slots=True)
class RewardsView:
    stake_id: int
    rewards: Decimal
    reward_token: str
    days_staked: int


@dataclass(slots=True)
class UnstakeReceipt:
    """Returned principal plus accrued rewards for a closed stake."""

    stake_id: int
    principal: Decimal
    rewards: Decimal
    reward_token: str
    payout: Decimal


class StakingEngine:
    """Stake lifecycle over the staking pool store."""

    def __init__(
        self,
        store: Store,
        settings: Settings,
        journal: JournalStore | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._journal = journal
        self._logger = get_logger("defihub.staking.engine")

    def list_pools(self) -> list[StakingPool]:
        """Pools ordered by APY, highest first."""
        return sorted(self._store.list_staking_pools(), key=lambda p: p.apy, reverse=True)

    def get_pool(self, pool_id: int) -> StakingPool:
        pool = self._store.get_staking_pool(pool_id)
        if pool is None:
            raise NotFound(f"staking_pool_not_found: {pool_id}")
        return pool

    def stakes_for(self, user: str) -> list[Stake]:
        return self._store.list_stakes(user)

    def rewards_for(self, stake_id: int, *, as_of: datetime | None = None) -> RewardsView:
        as_of = as_of or datetime.now(timezone.utc)
        stake = self._get_stake(stake_id)
        pool = self.get_pool(stake.pool_id)
        return RewardsView(
            stake_id=stake.stake_id,
            rewards=accrued_rewards(stake, pool, as_of),
            reward_token=pool.reward_token,
            days_staked=days_staked(stake.staked_at, as_of),
        )

    @retry_on_conflict
    def stake(
        self,
        pool_id: int,
        user: str,
        amount: Decimal,
        *,
        now: datetime | None = None,
    ) -> Stake:
        """Lock ``amount`` in a pool until its lock period elapses."""
        now = now or datetime.now(timezone.utc)
        pool = self.get_pool(pool_id)
        if amount <= 0:
            raise InvalidInput("amount_must_be_positive")
        if amount < pool.min_stake:
            raise InvalidInput(f"below_min_stake: amount={amount} min_stake={pool.min_stake}")

        with self._store.lock(f"staking_pool:{pool_id}", f"user:{user}"):
            pool = self.get_pool(pool_id)
            with precise():
                self._store.put_staking_pool(replace(pool, tvl=pool.tvl + amount))
            stake = self._store.append_stake(
                Stake(
                    stake_id=0,
                    pool_id=pool_id,
                    user=user,
                    amount=amount,
                    staked_at=now,
                    unlock_at=now + timedelta(days=pool.lock_period_days),
                )
            )

        log_position_event(
            self._logger,
            event="staked",
            user=user,
            key=pool.name,
            amount=amount,
            stake_id=stake.stake_id,
            unlock_at=stake.unlock_at.isoformat(),
        )
        if self._journal is not None:
            self._journal.append(
                "stake",
                {"stake_id": stake.stake_id, "pool_id": pool_id, "user": user, "amount": amount},
            )
        return stake

    @retry_on_conflict
    def unstake(self, user: str, stake_id: int, *, now: datetime | None = None) -> UnstakeReceipt:
        """Close a stake after unlock and pay out principal plus rewards."""
        now = now or datetime.now(timezone.utc)
        stake = self._get_stake(stake_id, user=user)

        with self._store.lock(f"staking_pool:{stake.pool_id}", f"user:{user}"):
            stake = self._get_stake(stake_id, user=user)
            if now < stake.unlock_at:
                raise StakeLocked(
                    f"stake_locked: stake_id={stake_id} unlock_at={stake.unlock_at.isoformat()}"
                )
            pool = self.get_pool(stake.pool_id)
            rewards = accrued_rewards(stake, pool, now)
            with precise():
                self._store.put_staking_pool(
                    replace(pool, tvl=max(ZERO, pool.tvl - stake.amount))
                )
                payout = stake.amount + rewards
            self._store.remove_stake(stake_id)

        log_position_event(
            self._logger,
            event="unstaked",
            user=user,
            key=pool.name,
            stake_id=stake_id,
            principal=stake.amount,
            rewards=rewards,
        )
        if self._journal is not None:
            self._journal.append(
                "unstake",
                {
                    "stake_id": stake_id,
                    "user": user,
                    "principal": stake.amount,
                    "rewards": rewards,
                    "reward_token": pool.reward_token,
                },
            )
        return UnstakeReceipt(
            stake_id=stake_id,
            principal=stake.amount,
            rewards=rewards,
            reward_token=pool.reward_token,
            payout=payout,
        )

    def _get_stake(self, stake_id: int, *, user: str | None = None) -> Stake:
        stake = self._store.get_stake(stake_id)
        if stake is None or (user is not None and stake.user != user):
            raise StakeNotFound(f"stake_not_found: {stake_id}")
        return stake
