"""Error taxonomy shared by all engines."""

from __future__ import annotations


class DefiHubError(Exception):
    """Base error. ``code`` is a stable snake_case identifier."""

    code = "defihub_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)


class NotFound(DefiHubError):
    """Unknown pool, market, symbol or record."""

    code = "not_found"


class PoolNotFound(NotFound):
    code = "pool_not_found"


class MarketNotFound(NotFound):
    code = "market_not_found"


class StakeNotFound(NotFound):
    code = "stake_not_found"


class LoanNotFound(NotFound):
    code = "loan_not_found"


class PositionNotFound(NotFound):
    code = "position_not_found"


class ChainNotFound(NotFound):
    code = "chain_not_found"


class TransferNotFound(NotFound):
    code = "transfer_not_found"


class AssetNotFound(NotFound):
    code = "asset_not_found"



class InvalidInput(DefiHubError):
    """Request failed validation before reaching any arithmetic."""

    code = "invalid_input"


class BusinessRuleError(DefiHubError):
    """Valid request rejected by a business rule. Caller must adjust it."""

    code = "business_rule_violation"


class InsufficientCollateral(BusinessRuleError):
    code = "insufficient_collateral"


class InsufficientLiquidity(BusinessRuleError):
    code = "insufficient_liquidity"


class StakeLocked(BusinessRuleError):
    code = "stake_locked"


class SlippageExceeded(BusinessRuleError):
    code = "slippage_exceeded"


class LoanHealthy(BusinessRuleError):
    code = "loan_healthy"


class ConcurrencyConflict(DefiHubError):
    """Lost update detected on a shared pool or market."""

    code = "concurrency_conflict"


class AccountingDrift(DefiHubError):
    """A ledger total would go negative. Points at a bookkeeping bug, not a bad request."""

    code = "accounting_drift"
