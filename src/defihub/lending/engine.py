"""Lending risk engine: supply, borrow, repay and liquidation."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal

from defihub.config import Settings
from defihub.errors import (
    AccountingDrift,
    InsufficientCollateral,
    InsufficientLiquidity,
    InvalidInput,
    LoanHealthy,
    LoanNotFound,
    MarketNotFound,
    NotFound,
)
from defihub.journal.store import JournalStore
from defihub.store.base import Store
from defihub.types import Loan, Market, Position
from defihub.utils.decimals import HUNDRED, ONE, ZERO, precise
from defihub.utils.logging import (
    get_logger,
    log_liquidation,
    log_position_event,
    log_risk_event,
)
from defihub.utils.retry import retry_on_conflict

INFINITE_HEALTH = Decimal("Infinity")


def health_factor(
    collateral_value: Decimal,
    borrowed_value: Decimal,
    liquidation_threshold: Decimal,
) -> Decimal:
    """Risk-adjusted collateral over debt. Below 1 is liquidatable."""
    if borrowed_value <= 0:
        return INFINITE_HEALTH
    with precise():
        return collateral_value * liquidation_threshold / borrowed_value


def utilization(market: Market) -> Decimal:
    """Borrowed share of supply in percent; 0 for an empty market."""
    if market.total_supplied <= 0:
        return ZERO
    with precise():
        return market.total_borrowed / market.total_supplied * HUNDRED


@dataclass(slots=True)
class LiquidationResult:
    """Outcome of liquidating one loan."""

    loan: Loan
    repaid_amount: Decimal
    seized_collateral: Decimal
    health_before: Decimal


class LendingEngine:
    """Collateralized lending over the market store."""

    def __init__(
        self,
        store: Store,
        settings: Settings,
        journal: JournalStore | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._journal = journal
        self._logger = get_logger("defihub.lending.engine")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_markets(self) -> list[Market]:
        return self._store.list_markets()

    def get_market(self, asset: str) -> Market:
        market = self._store.get_market(asset)
        if market is None:
            raise MarketNotFound(f"market_not_found: {asset}")
        return market

    def positions_for(self, user: str) -> tuple[list[Position], list[Loan]]:
        """Positions and active loans of one user."""
        return (
            self._store.list_positions(user),
            self._store.list_loans(user=user, status="active"),
        )

    def account_health(self, user: str) -> Decimal:
        """Aggregate health factor across all of the user's positions."""
        collateral_value = ZERO
        borrowed_value = ZERO
        with precise():
            for position in self._store.list_positions(user):
                price = self._price(position.asset)
                if position.supplied > 0:
                    threshold = self.get_market(position.asset).liquidation_threshold
                    collateral_value += position.supplied * price * threshold
                if position.borrowed > 0:
                    borrowed_value += position.borrowed * price
        # Threshold is already folded into collateral_value.
        return health_factor(collateral_value, borrowed_value, ONE)

    def loan_health(self, loan: Loan) -> Decimal:
        """Health of a single loan against its locked collateral."""
        collateral_market = self.get_market(loan.collateral_asset)
        with precise():
            collateral_value = loan.collateral_amount * self._price(loan.collateral_asset)
            borrowed_value = loan.amount * self._price(loan.asset)
        return health_factor(
            collateral_value, borrowed_value, collateral_market.liquidation_threshold
        )

    def max_borrow(self, user: str, asset: str, collateral_asset: str) -> Decimal:
        """Largest amount of ``asset`` the free collateral can back."""
        collateral_market = self.get_market(collateral_asset)
        self.get_market(asset)
        available = self._free_collateral(user, collateral_asset)
        with precise():
            return (
                available
                * self._price(collateral_asset)
                * collateral_market.collateral_factor
                / self._price(asset)
            )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @retry_on_conflict
    def supply(self, user: str, asset: str, amount: Decimal) -> Position:
        """Deposit ``amount`` of ``asset`` into the market."""
        self.get_market(asset)
        if amount <= 0:
            raise InvalidInput("amount_must_be_positive")

        with self._store.lock(f"market:{asset}", f"user:{user}"):
            self._adjust_markets({asset: (amount, ZERO)})
            position = self._position(user, asset)
            with precise():
                self._store.upsert_position(
                    replace(position, supplied=position.supplied + amount)
                )
            position = self._refresh_health(user)[asset]

        log_position_event(
            self._logger, event="supplied", user=user, key=asset, amount=amount
        )
        self._journal_event("supply", {"user": user, "asset": asset, "amount": amount})
        return position

    @retry_on_conflict
    def borrow(
        self,
        user: str,
        asset: str,
        amount: Decimal,
        collateral_asset: str,
        *,
        now: datetime | None = None,
    ) -> Loan:
        """Borrow against supplied collateral. Rejections leave state untouched."""
        now = now or datetime.now(timezone.utc)
        self.get_market(asset)
        self.get_market(collateral_asset)
        if amount <= 0:
            raise InvalidInput("amount_must_be_positive")

        keys = (f"market:{asset}", f"market:{collateral_asset}", f"user:{user}")
        with self._store.lock(*keys):
            market = self.get_market(asset)
            collateral_market = self.get_market(collateral_asset)
            limit = self.max_borrow(user, asset, collateral_asset)
            if amount > limit:
                log_risk_event(
                    self._logger,
                    event_type="insufficient_collateral",
                    action="borrow_rejected",
                    user=user,
                    asset=asset,
                    amount=str(amount),
                    max_borrow=str(limit),
                )
                raise InsufficientCollateral(
                    f"insufficient_collateral: requested={amount} max_borrow={limit}"
                )
            with precise():
                available_liquidity = market.total_supplied - market.total_borrowed
            if amount > available_liquidity:
                raise InsufficientLiquidity(
                    f"insufficient_liquidity: requested={amount} available={available_liquidity}"
                )

            with precise():
                collateral_amount = (
                    amount
                    * self._price(asset)
                    / (self._price(collateral_asset) * collateral_market.collateral_factor)
                )
            self._adjust_markets({asset: (ZERO, amount)})
            position = self._position(user, asset)
            with precise():
                self._store.upsert_position(
                    replace(position, borrowed=position.borrowed + amount)
                )
            loan = self._store.append_loan(
                Loan(
                    loan_id=0,
                    user=user,
                    asset=asset,
                    amount=amount,
                    collateral_asset=collateral_asset,
                    collateral_amount=collateral_amount,
                    interest_rate=market.borrow_apy,
                    created_at=now,
                )
            )
            self._refresh_health(user)

        log_position_event(
            self._logger,
            event="borrowed",
            user=user,
            key=asset,
            amount=amount,
            loan_id=loan.loan_id,
            collateral_asset=collateral_asset,
            collateral_amount=collateral_amount,
        )
        self._journal_event(
            "borrow",
            {
                "loan_id": loan.loan_id,
                "user": user,
                "asset": asset,
                "amount": amount,
                "collateral_asset": collateral_asset,
                "collateral_amount": collateral_amount,
            },
        )
        return loan

    @retry_on_conflict
    def repay(self, user: str, loan_id: int, *, now: datetime | None = None) -> Loan:
        """Repay an active loan in full and release its collateral."""
        now = now or datetime.now(timezone.utc)
        loan = self._active_loan(loan_id, user=user)

        with self._store.lock(f"market:{loan.asset}", f"user:{user}"):
            loan = self._active_loan(loan_id, user=user)
            position = self._reduced_position(user, loan.asset, borrowed=loan.amount)
            self._adjust_markets({loan.asset: (ZERO, -loan.amount)})
            self._store.upsert_position(position)
            loan = self._store.update_loan(replace(loan, status="repaid", closed_at=now))
            self._refresh_health(user)

        log_position_event(
            self._logger, event="repaid", user=user, key=loan.asset, loan_id=loan_id
        )
        self._journal_event("repay", {"loan_id": loan_id, "user": user, "amount": loan.amount})
        return loan

    @retry_on_conflict
    def liquidate(self, loan_id: int, *, now: datetime | None = None) -> LiquidationResult:
        """Repay an unhealthy loan from seized collateral."""
        now = now or datetime.now(timezone.utc)
        loan = self._active_loan(loan_id)
        keys = (
            f"market:{loan.asset}",
            f"market:{loan.collateral_asset}",
            f"user:{loan.user}",
        )
        with self._store.lock(*keys):
            loan = self._active_loan(loan_id)
            health_before = self.loan_health(loan)
            if health_before >= ONE:
                raise LoanHealthy(f"loan_healthy: loan_id={loan_id} health={health_before}")

            with precise():
                seized = min(
                    loan.collateral_amount,
                    loan.amount
                    * self._price(loan.asset)
                    / self._price(loan.collateral_asset)
                    * (ONE + self._settings.liquidation_bonus),
                )
            collateral_position = self._position(loan.user, loan.collateral_asset)
            seized = min(seized, collateral_position.supplied)

            changes: dict[str, tuple[Decimal, Decimal]] = {loan.asset: (ZERO, -loan.amount)}
            supplied_delta, borrowed_delta = changes.get(loan.collateral_asset, (ZERO, ZERO))
            changes[loan.collateral_asset] = (supplied_delta - seized, borrowed_delta)
            if loan.asset == loan.collateral_asset:
                reduced = [
                    self._reduced_position(
                        loan.user, loan.asset, supplied=seized, borrowed=loan.amount
                    )
                ]
            else:
                reduced = [
                    self._reduced_position(loan.user, loan.collateral_asset, supplied=seized),
                    self._reduced_position(loan.user, loan.asset, borrowed=loan.amount),
                ]
            self._adjust_markets(changes)
            for position in reduced:
                self._store.upsert_position(position)
            loan = self._store.update_loan(replace(loan, status="liquidated", closed_at=now))
            self._refresh_health(loan.user)

        log_liquidation(
            self._logger,
            kind="loan",
            record_id=loan_id,
            user=loan.user,
            repaid=loan.amount,
            seized=seized,
            health_before=health_before,
        )
        self._journal_event(
            "loan_liquidated",
            {
                "loan_id": loan_id,
                "user": loan.user,
                "repaid_amount": loan.amount,
                "seized_collateral": seized,
                "health_before": health_before,
            },
        )
        return LiquidationResult(
            loan=loan,
            repaid_amount=loan.amount,
            seized_collateral=seized,
            health_before=health_before,
        )

    def liquidation_sweep(self, *, now: datetime | None = None) -> list[LiquidationResult]:
        """Liquidate every active loan whose health fell below 1."""
        results: list[LiquidationResult] = []
        for loan in self._store.list_loans(status="active"):
            if self.loan_health(loan) < ONE:
                results.append(self.liquidate(loan.loan_id, now=now))
        return results

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _adjust_markets(self, changes: dict[str, tuple[Decimal, Decimal]]) -> list[Market]:
        """Apply (supplied, borrowed) deltas to markets in one versioned write."""
        updated: list[Market] = []
        with precise():
            for asset, (supplied_delta, borrowed_delta) in changes.items():
                market = self.get_market(asset)
                updated.append(
                    replace(
                        market,
                        total_supplied=self._non_negative(
                            market.total_supplied + supplied_delta,
                            field="total_supplied",
                            key=f"market:{asset}",
                        ),
                        total_borrowed=self._non_negative(
                            market.total_borrowed + borrowed_delta,
                            field="total_borrowed",
                            key=f"market:{asset}",
                        ),
                    )
                )
        return self._store.put_markets(*updated)

    def _position(self, user: str, asset: str) -> Position:
        return self._store.get_position(user, asset) or Position(user=user, asset=asset)

    def _reduced_position(
        self,
        user: str,
        asset: str,
        *,
        supplied: Decimal = ZERO,
        borrowed: Decimal = ZERO,
    ) -> Position:
        """The position after a reduction. Nothing is written."""
        position = self._position(user, asset)
        key = f"position:{user}:{asset}"
        with precise():
            return replace(
                position,
                supplied=self._non_negative(
                    position.supplied - supplied, field="supplied", key=key
                ),
                borrowed=self._non_negative(
                    position.borrowed - borrowed, field="borrowed", key=key
                ),
            )

    def _non_negative(self, value: Decimal, *, field: str, key: str) -> Decimal:
        if value < 0:
            log_risk_event(
                self._logger,
                event_type="accounting_drift",
                action="write_refused",
                key=key,
                field=field,
                value=str(value),
            )
            raise AccountingDrift(f"accounting_drift: {key} {field}={value}")
        return value

    def _refresh_health(self, user: str) -> dict[str, Position]:
        health = self.account_health(user)
        return {
            p.asset: self._store.upsert_position(replace(p, health_factor=health))
            for p in self._store.list_positions(user)
        }

    def _free_collateral(self, user: str, collateral_asset: str) -> Decimal:
        position = self._store.get_position(user, collateral_asset)
        supplied = position.supplied if position is not None else ZERO
        with precise():
            locked = sum(
                (
                    loan.collateral_amount
                    for loan in self._store.list_loans(user=user, status="active")
                    if loan.collateral_asset == collateral_asset
                ),
                ZERO,
            )
            return max(ZERO, supplied - locked)

    def _active_loan(self, loan_id: int, *, user: str | None = None) -> Loan:
        loan = self._store.get_loan(loan_id)
        if loan is None or (user is not None and loan.user != user):
            raise LoanNotFound(f"loan_not_found: {loan_id}")
        if loan.status != "active":
            raise InvalidInput(f"loan_not_active: {loan_id} status={loan.status}")
        return loan

    def _price(self, asset: str) -> Decimal:
        price = self._store.get_price(asset)
        if price is None:
            raise NotFound(f"price_not_found: {asset}")
        return price

    def _journal_event(self, event_type: str, payload: dict[str, object]) -> None:
        if self._journal is not None:
            self._journal.append(event_type, payload)
