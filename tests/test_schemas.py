from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from defihub.perps.engine import CloseReceipt
from defihub.schemas import (
    BorrowRequest,
    BridgeTransferRequest,
    CloseResponse,
    LoanResponse,
    OpenPositionRequest,
    PerpPositionResponse,
    PositionResponse,
    QuoteRequest,
    QuoteResponse,
    RewardsResponse,
    StakeRequest,
    SupplyRequest,
    SwapRequest,
    TradeResponse,
    UnstakeResponse,
    format_health,
)
from defihub.staking.engine import RewardsView, UnstakeReceipt
from defihub.types import Loan, PerpPosition, Position, Quote, Trade


def test_request_accepts_numeric_strings() -> None:
    request = QuoteRequest.model_validate(
        {"tokenIn": "ETH", "tokenOut": "USDC", "amountIn": "1.000000000000000001"}
    )
    assert request.amount_in == Decimal("1.000000000000000001")


def test_request_rejects_floats() -> None:
    with pytest.raises(ValidationError):
        QuoteRequest.model_validate({"tokenIn": "ETH", "tokenOut": "USDC", "amountIn": 1.5})


def test_request_rejects_unknown_fields() -> None:
    with pytest.raises(ValidationError):
        QuoteRequest.model_validate(
            {"tokenIn": "ETH", "tokenOut": "USDC", "amountIn": "1", "slippage": "0.5"}
        )


def test_swap_request_uses_camel_case_aliases() -> None:
    request = SwapRequest.model_validate(
        {
            "userAddress": "0xabc",
            "tokenIn": "ETH",
            "tokenOut": "USDC",
            "amountIn": "2",
            "minAmountOut": "4900",
        }
    )
    assert request.user_address == "0xabc"
    assert request.min_amount_out == Decimal("4900")


def test_quote_response_is_fixed_precision() -> None:
    quote = Quote(
        token_in="ETH",
        token_out="USDC",
        amount_in=Decimal("100"),
        fee=Decimal("0.300"),
        amount_after_fee=Decimal("99.700"),
        amount_out=Decimal("237414.868790779635185978"),
        price_impact=Decimal("4.748297"),
        route=("ETH", "USDC"),
    )
    dumped = QuoteResponse.from_quote(quote).model_dump(by_alias=True)
    assert dumped == {
        "amountOut": "237414.868790",
        "fee": "0.300000",
        "amountAfterFee": "99.700000",
        "priceImpact": "4.74",
        "route": ["ETH", "USDC"],
    }


def test_trade_response_formats_price() -> None:
    trade = Trade(
        trade_id=7,
        user="alice",
        token_in="ETH",
        token_out="USDC",
        amount_in=Decimal("1"),
        amount_out=Decimal("2493.765586034912718204"),
        fee=Decimal("0.003"),
        price=Decimal("2493.765586034912718204"),
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
    )
    dumped = TradeResponse.from_trade(trade).model_dump(by_alias=True)
    assert dumped["tradeId"] == 7
    assert dumped["price"] == "2493.765586"
    assert dumped["status"] == "completed"


def test_health_factor_is_null_without_debt() -> None:
    position = Position(user="alice", asset="ETH", supplied=Decimal("10"))
    dumped = PositionResponse.from_position(position).model_dump(by_alias=True)
    assert dumped["healthFactor"] is None
    assert format_health(Decimal("1.328125")) == "1.32"


def test_rewards_response_keeps_18_decimals() -> None:
    view = RewardsView(
        stake_id=1,
        rewards=Decimal("7.56164383561643835"),
        reward_token="DFH",
        days_staked=30,
    )
    dumped = RewardsResponse.from_view(view).model_dump(by_alias=True)
    assert dumped["rewards"] == "7.561643835616438350"
    assert dumped["daysStaked"] == 30


@pytest.mark.parametrize("raw", ["NaN", "Infinity", "abc", True])
def test_request_rejects_non_finite_and_garbage(raw: object) -> None:
    with pytest.raises(ValidationError):
        QuoteRequest.model_validate({"tokenIn": "ETH", "tokenOut": "USDC", "amountIn": raw})


@pytest.mark.parametrize(
    ("model", "payload"),
    [
        (SupplyRequest, {"userAddress": "0xabc", "asset": "ETH", "amount": "10"}),
        (
            BorrowRequest,
            {"userAddress": "0xabc", "asset": "USDC", "amount": "16000", "collateralAsset": "ETH"},
        ),
        (StakeRequest, {"poolId": 2, "userAddress": "0xabc", "amount": "1000"}),
        (
            OpenPositionRequest,
            {
                "userAddress": "0xabc",
                "symbol": "ETH-PERP",
                "size": "1",
                "side": "long",
                "leverage": "10",
                "margin": "250",
            },
        ),
        (
            BridgeTransferRequest,
            {"userAddress": "0xabc", "fromChain": 1, "toChain": 137, "token": "USDC", "amount": "5"},
        ),
    ],
)
def test_request_models_accept_camel_case_payloads(model: type, payload: dict) -> None:
    request = model.model_validate(payload)
    assert request.user_address == "0xabc"


def test_request_models_reject_float_amounts() -> None:
    with pytest.raises(ValidationError):
        StakeRequest.model_validate({"poolId": 2, "userAddress": "0xabc", "amount": 1000.0})


def test_loan_response_keeps_collateral_precision() -> None:
    loan = Loan(
        loan_id=3,
        user="alice",
        asset="USDC",
        amount=Decimal("16000"),
        collateral_asset="ETH",
        collateral_amount=Decimal("8"),
        interest_rate=Decimal("6.8"),
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
    )
    dumped = LoanResponse.from_loan(loan).model_dump(by_alias=True)
    assert dumped["amount"] == "16000.000000"
    assert dumped["collateralAmount"] == "8.000000000000000000"
    assert dumped["status"] == "active"


def test_unstake_response_formats_payout() -> None:
    receipt = UnstakeReceipt(
        stake_id=1,
        principal=Decimal("1000"),
        rewards=Decimal("7.56164383561643835"),
        reward_token="DFH",
        payout=Decimal("1007.56164383561643835"),
    )
    dumped = UnstakeResponse.from_receipt(receipt).model_dump(by_alias=True)
    assert dumped["payout"] == "1007.561643835616438350"
    assert dumped["rewardToken"] == "DFH"


def test_perp_responses_truncate_toward_zero() -> None:
    position = PerpPosition(
        position_id=5,
        user="alice",
        symbol="ETH-PERP",
        size=Decimal("1"),
        side="short",
        entry_price=Decimal("2501.20"),
        leverage=Decimal("10"),
        margin=Decimal("250"),
        liquidation_price=Decimal("2526.2000009"),
        opened_at=datetime(2024, 1, 1, tzinfo=UTC),
    )
    dumped = PerpPositionResponse.from_position(position, Decimal("-1.0000009")).model_dump(
        by_alias=True
    )
    assert dumped["liquidationPrice"] == "2526.200000"
    assert dumped["unrealizedPnl"] == "-1.000000"

    receipt = CloseReceipt(
        position=position,
        exit_price=Decimal("2400"),
        realized_pnl=Decimal("101.2"),
        margin_returned=Decimal("351.2"),
    )
    closed = CloseResponse.from_receipt(receipt).model_dump(by_alias=True)
    assert closed == {
        "positionId": 5,
        "exitPrice": "2400.000000",
        "realizedPnl": "101.200000",
        "marginReturned": "351.200000",
    }
