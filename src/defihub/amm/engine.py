"""Constant-product AMM quoting and swap execution."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

from defihub.config import Settings
from defihub.errors import InvalidInput, PoolNotFound, SlippageExceeded
from defihub.journal.store import JournalStore
from defihub.store.base import Store
from defihub.types import Pool, Quote, Trade
from defihub.utils.decimals import HUNDRED, ONE, ZERO, precise, truncate
from defihub.utils.logging import get_logger, log_swap
from defihub.utils.retry import retry_on_conflict


def compute_quote(pool: Pool, token_in: str, token_out: str, amount_in: Decimal) -> Quote:
    """Price a trade against the pool reserves without touching them.

    ``fee`` is exact. ``amount_out`` is truncated to 18 dp so rounding never
    favours the trader.
    """
    if token_in == token_out:
        raise InvalidInput("identical_tokens")
    if amount_in <= 0:
        raise InvalidInput("amount_in_must_be_positive")
    if {token_in, token_out} != {pool.token_a, pool.token_b}:
        raise PoolNotFound(f"pool_not_found: {token_in}/{token_out}")
    if not ZERO <= pool.fee_rate < ONE:
        raise InvalidInput(f"invalid_fee_rate: {pool.fee_rate}")

    reserve_in, reserve_out = pool.reserves_for(token_in)
    with precise():
        fee = amount_in * pool.fee_rate
        amount_after_fee = amount_in - fee
        denominator = reserve_in + amount_after_fee
        if denominator <= 0:
            amount_out = ZERO
            price_impact = ZERO
        else:
            amount_out = truncate(amount_after_fee * reserve_out / denominator)
            price_impact = amount_after_fee / denominator * HUNDRED

    return Quote(
        token_in=token_in,
        token_out=token_out,
        amount_in=amount_in,
        fee=fee,
        amount_after_fee=amount_after_fee,
        amount_out=amount_out,
        price_impact=price_impact,
        route=(token_in, token_out),
    )


def apply_swap(pool: Pool, quote: Quote) -> Pool:
    """Return the pool after settling ``quote``. The fee stays in the pool."""
    with precise():
        if quote.token_in == pool.token_a:
            return replace(
                pool,
                reserve_a=pool.reserve_a + quote.amount_in,
                reserve_b=pool.reserve_b - quote.amount_out,
            )
        return replace(
            pool,
            reserve_a=pool.reserve_a - quote.amount_out,
            reserve_b=pool.reserve_b + quote.amount_in,
        )


class AmmEngine:
    """Quote and swap service over the pool store."""

    def __init__(
        self,
        store: Store,
        settings: Settings,
        journal: JournalStore | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._journal = journal
        self._logger = get_logger("defihub.amm.engine")

    def list_pools(self) -> list[Pool]:
        return self._store.list_pools()

    def quote(self, token_in: str, token_out: str, amount_in: Decimal) -> Quote:
        """Quote a trade. Pure read."""
        return compute_quote(self._get_pool(token_in, token_out), token_in, token_out, amount_in)

    @retry_on_conflict
    def swap(
        self,
        user: str,
        token_in: str,
        token_out: str,
        amount_in: Decimal,
        *,
        min_amount_out: Decimal | None = None,
        now: datetime | None = None,
    ) -> Trade:
        """Execute a swap: move reserves and record the trade atomically."""
        now = now or datetime.now(timezone.utc)
        pool = self._get_pool(token_in, token_out)
        with self._store.lock(f"pool:{pool.pool_id}"):
            pool = self._get_pool(token_in, token_out)
            quote = compute_quote(pool, token_in, token_out, amount_in)
            if quote.amount_out <= 0:
                raise InvalidInput("amount_out_is_zero")
            if min_amount_out is not None and quote.amount_out < min_amount_out:
                raise SlippageExceeded(
                    f"slippage_exceeded: amount_out={quote.amount_out} min={min_amount_out}"
                )

            self._store.put_pool(apply_swap(pool, quote))
            with precise():
                price = truncate(quote.amount_out / quote.amount_in)
            trade = self._store.append_trade(
                Trade(
                    trade_id=0,
                    user=user,
                    token_in=token_in,
                    token_out=token_out,
                    amount_in=amount_in,
                    amount_out=quote.amount_out,
                    fee=quote.fee,
                    price=price,
                    created_at=now,
                )
            )

        log_swap(
            self._logger,
            user=user,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=quote.amount_out,
            trade_id=trade.trade_id,
        )
        if self._journal is not None:
            self._journal.append(
                "swap",
                {
                    "trade_id": trade.trade_id,
                    "user": user,
                    "token_in": token_in,
                    "token_out": token_out,
                    "amount_in": amount_in,
                    "amount_out": quote.amount_out,
                    "fee": quote.fee,
                },
            )
        return trade

    def trades_for(self, user: str) -> list[Trade]:
        """Trades of one user, newest first."""
        return self._store.list_trades(user)

    def _get_pool(self, token_in: str, token_out: str) -> Pool:
        if token_in == token_out:
            raise InvalidInput("identical_tokens")
        pool = self._store.get_pool(token_in, token_out)
        if pool is None:
            raise PoolNotFound(f"pool_not_found: {token_in}/{token_out}")
        return pool
