"""Perpetual futures margin engine."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal

from defihub.config import Settings
from defihub.errors import InvalidInput, MarketNotFound, PositionNotFound
from defihub.journal.store import JournalStore
from defihub.store.base import Store
from defihub.types import PerpMarket, PerpPosition, Side
from defihub.utils.decimals import ZERO, precise
from defihub.utils.logging import get_logger, log_liquidation, log_position_event
from defihub.utils.retry import retry_on_conflict

_SIDES: tuple[Side, ...] = ("long", "short")


def validate_order(side: str, size: Decimal, leverage: Decimal, margin: Decimal) -> None:
    """Reject inputs before they reach any division."""
    if side not in _SIDES:
        raise InvalidInput(f"unknown_side: {side}")
    if size <= 0:
        raise InvalidInput("size_must_be_positive")
    if leverage <= 0:
        raise InvalidInput("leverage_must_be_positive")
    if margin <= 0:
        raise InvalidInput("margin_must_be_positive")


def liquidation_distance(size: Decimal, leverage: Decimal, margin: Decimal) -> Decimal:
    """Price move that exhausts the margin. Same formula for both sides."""
    with precise():
        return margin / size / leverage


def liquidation_price(
    side: str,
    entry_price: Decimal,
    size: Decimal,
    leverage: Decimal,
    margin: Decimal,
) -> Decimal:
    """Strictly below entry for longs (floored at 0), strictly above for shorts."""
    validate_order(side, size, leverage, margin)
    distance = liquidation_distance(size, leverage, margin)
    with precise():
        if side == "long":
            return max(ZERO, entry_price - distance)
        return entry_price + distance


def unrealized_pnl(position: PerpPosition, mark_price: Decimal) -> Decimal:
    """Mark-to-market PnL of an open position."""
    if position.status != "open":
        raise InvalidInput(f"position_not_open: {position.position_id} status={position.status}")
    with precise():
        pnl = (mark_price - position.entry_price) * position.size
    return pnl if position.side == "long" else -pnl


def is_liquidatable(position: PerpPosition, mark_price: Decimal) -> bool:
    """Whether the mark crossed the liquidation price against the position."""
    if position.side == "long":
        return mark_price <= position.liquidation_price
    return mark_price >= position.liquidation_price


@dataclass(slots=True)
class CloseReceipt:
    position: PerpPosition
    exit_price: Decimal
    realized_pnl: Decimal
    margin_returned: Decimal


class PerpEngine:
    """Leveraged position lifecycle over perpetual markets."""

    def __init__(
        self,
        store: Store,
        settings: Settings,
        journal: JournalStore | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._journal = journal
        self._logger = get_logger("defihub.perps.engine")

    def list_markets(self) -> list[PerpMarket]:
        return self._store.list_perp_markets()

    def get_market(self, symbol: str) -> PerpMarket:
        market = self._store.get_perp_market(symbol)
        if market is None:
            raise MarketNotFound(f"market_not_found: {symbol}")
        return market

    def positions_for(self, user: str) -> list[tuple[PerpPosition, Decimal]]:
        """Open positions of ``user`` with PnL at the current mark."""
        rows: list[tuple[PerpPosition, Decimal]] = []
        for position in self._store.list_perp_positions(user=user, status="open"):
            mark = self.get_market(position.symbol).mark_price
            rows.append((position, unrealized_pnl(position, mark)))
        return rows

    @retry_on_conflict
    def open(
        self,
        user: str,
        symbol: str,
        size: Decimal,
        side: str,
        leverage: Decimal,
        margin: Decimal,
        *,
        now: datetime | None = None,
    ) -> PerpPosition:
        """Open a position at the current mark price."""
        now = now or datetime.now(timezone.utc)
        market = self.get_market(symbol)
        validate_order(side, size, leverage, margin)
        if leverage > market.max_leverage:
            raise InvalidInput(
                f"leverage_out_of_bounds: leverage={leverage} max={market.max_leverage}"
            )

        with self._store.lock(f"perp:{symbol}", f"user:{user}"):
            market = self.get_market(symbol)
            entry_price = market.mark_price
            liq_price = liquidation_price(side, entry_price, size, leverage, margin)
            with precise():
                self._store.put_perp_market(
                    replace(market, open_interest=market.open_interest + size * entry_price)
                )
            position = self._store.append_perp_position(
                PerpPosition(
                    position_id=0,
                    user=user,
                    symbol=symbol,
                    size=size,
                    side=side,  # type: ignore[arg-type]
                    entry_price=entry_price,
                    leverage=leverage,
                    margin=margin,
                    liquidation_price=liq_price,
                    opened_at=now,
                )
            )

        log_position_event(
            self._logger,
            event="perp_opened",
            user=user,
            key=symbol,
            position_id=position.position_id,
            side=side,
            size=size,
            entry_price=entry_price,
            liquidation_price=liq_price,
        )
        self._journal_event(
            "perp_open",
            {
                "position_id": position.position_id,
                "user": user,
                "symbol": symbol,
                "side": side,
                "size": size,
                "leverage": leverage,
                "margin": margin,
                "entry_price": entry_price,
                "liquidation_price": liq_price,
            },
        )
        return position

    @retry_on_conflict
    def close(self, user: str, position_id: int, *, now: datetime | None = None) -> CloseReceipt:
        """Close at the current mark and realize PnL.

        A position the mark has already crossed is liquidated instead: its
        margin is forfeited and nothing is returned.
        """
        now = now or datetime.now(timezone.utc)
        position = self._get_position(position_id, user=user)

        with self._store.lock(f"perp:{position.symbol}", f"user:{user}"):
            position = self._get_position(position_id, user=user)
            if position.status != "open":
                raise InvalidInput(
                    f"position_not_open: {position_id} status={position.status}"
                )
            market = self.get_market(position.symbol)
            if is_liquidatable(position, market.mark_price):
                position = self._liquidate(market, position, now)
                return CloseReceipt(
                    position=position,
                    exit_price=market.mark_price,
                    realized_pnl=-position.margin,
                    margin_returned=ZERO,
                )
            pnl = unrealized_pnl(position, market.mark_price)
            with precise():
                margin_returned = max(ZERO, position.margin + pnl)
            self._release_open_interest(market, position)
            position = self._store.update_perp_position(
                replace(position, status="closed", closed_at=now)
            )

        log_position_event(
            self._logger,
            event="perp_closed",
            user=user,
            key=position.symbol,
            position_id=position_id,
            realized_pnl=pnl,
        )
        self._journal_event(
            "perp_close",
            {
                "position_id": position_id,
                "user": user,
                "exit_price": market.mark_price,
                "realized_pnl": pnl,
                "margin_returned": margin_returned,
            },
        )
        return CloseReceipt(
            position=position,
            exit_price=market.mark_price,
            realized_pnl=pnl,
            margin_returned=margin_returned,
        )

    @retry_on_conflict
    def update_mark_price(
        self,
        symbol: str,
        mark_price: Decimal,
        *,
        now: datetime | None = None,
    ) -> list[PerpPosition]:
        """Move the mark and liquidate every position it crosses.

        Both happen under the market lock, so no reader sees a crossed
        position still open. Returns the positions liquidated by the move.
        """
        if mark_price <= 0:
            raise InvalidInput("mark_price_must_be_positive")
        with self._store.lock(f"perp:{symbol}"):
            market = self.get_market(symbol)
            self._store.put_perp_market(replace(market, mark_price=mark_price))
            self._journal_event("mark_price", {"symbol": symbol, "mark_price": mark_price})
            return self.liquidation_sweep(symbol, now=now)

    def liquidation_sweep(
        self,
        symbol: str,
        *,
        now: datetime | None = None,
    ) -> list[PerpPosition]:
        """Liquidate open positions whose liquidation price the mark has crossed."""
        now = now or datetime.now(timezone.utc)
        liquidated: list[PerpPosition] = []
        with self._store.lock(f"perp:{symbol}"):
            mark = self.get_market(symbol).mark_price
            for position in self._store.list_perp_positions(symbol=symbol, status="open"):
                if is_liquidatable(position, mark):
                    liquidated.append(self._liquidate(self.get_market(symbol), position, now))
        return liquidated

    def _liquidate(
        self,
        market: PerpMarket,
        position: PerpPosition,
        now: datetime,
    ) -> PerpPosition:
        self._release_open_interest(market, position)
        position = self._store.update_perp_position(
            replace(position, status="liquidated", closed_at=now)
        )
        log_liquidation(
            self._logger,
            kind="perp",
            record_id=position.position_id,
            user=position.user,
            mark_price=market.mark_price,
            liquidation_price=position.liquidation_price,
        )
        self._journal_event(
            "perp_liquidated",
            {
                "position_id": position.position_id,
                "user": position.user,
                "symbol": position.symbol,
                "mark_price": market.mark_price,
                "liquidation_price": position.liquidation_price,
            },
        )
        return position

    def _release_open_interest(self, market: PerpMarket, position: PerpPosition) -> None:
        with precise():
            remaining = market.open_interest - position.size * position.entry_price
        self._store.put_perp_market(replace(market, open_interest=max(ZERO, remaining)))

    def _get_position(self, position_id: int, *, user: str | None = None) -> PerpPosition:
        position = self._store.get_perp_position(position_id)
        if position is None or (user is not None and position.user != user):
            raise PositionNotFound(f"position_not_found: {position_id}")
        return position

    def _journal_event(self, event_type: str, payload: dict[str, object]) -> None:
        if self._journal is not None:
            self._journal.append(event_type, payload)
