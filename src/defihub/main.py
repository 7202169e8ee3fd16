"""CLI 入口模块 - DeFiHub 金融计算核心命令行接口。"""

import json
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, NoReturn

import click
from pydantic import BaseModel, TypeAdapter, ValidationError

from defihub import __version__
from defihub.amm.engine import AmmEngine
from defihub.analytics.service import AnalyticsService
from defihub.config import get_settings
from defihub.errors import DefiHubError
from defihub.lending.engine import LendingEngine
from defihub.perps.engine import PerpEngine, liquidation_price
from defihub.schemas import (
    DecimalStr,
    MarketResponse,
    PoolResponse,
    PriceResponse,
    ProtocolStatsResponse,
    QuoteRequest,
    QuoteResponse,
    StakingPoolResponse,
)
from defihub.staking.engine import StakingEngine, accrued_rewards
from defihub.store.seed import build_store
from defihub.types import Stake, StakingPool
from defihub.utils.decimals import PRICE_DP, TOKEN_DP, format_fixed
from defihub.utils.logging import get_logger, setup_logging

_decimal_adapter: TypeAdapter[Decimal] = TypeAdapter(DecimalStr)


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """DeFiHub - 去中心化金融演示平台的计算核心。

    提供 AMM 报价、借贷风控、质押收益和永续合约保证金计算。
    """
    if version:
        click.echo(f"defihub version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
def pools() -> None:
    """列出 AMM 流动性池。"""
    setup_logging()
    engine = AmmEngine(build_store(get_settings()), get_settings())
    _echo_models([PoolResponse.from_pool(p) for p in engine.list_pools()])


@cli.command()
@click.argument("token_in")
@click.argument("token_out")
@click.argument("amount_in")
def quote(token_in: str, token_out: str, amount_in: str) -> None:
    """对 TOKEN_IN -> TOKEN_OUT 兑换报价（不修改池子状态）。"""
    setup_logging()
    logger = get_logger("defihub.main")
    settings = get_settings()

    try:
        request = QuoteRequest.model_validate(
            {"tokenIn": token_in, "tokenOut": token_out, "amountIn": amount_in}
        )
        engine = AmmEngine(build_store(settings), settings)
        result = engine.quote(request.token_in, request.token_out, request.amount_in)
    except (DefiHubError, ValidationError) as exc:
        _fail(logger, "quote_failed", exc)

    _echo_models([QuoteResponse.from_quote(result)])


@cli.command()
def markets() -> None:
    """列出借贷市场及资金利用率。"""
    setup_logging()
    engine = LendingEngine(build_store(get_settings()), get_settings())
    _echo_models([MarketResponse.from_market(m) for m in engine.list_markets()])


@cli.command("staking-pools")
def staking_pools() -> None:
    """按 APY 从高到低列出质押池。"""
    setup_logging()
    engine = StakingEngine(build_store(get_settings()), get_settings())
    _echo_models([StakingPoolResponse.from_pool(p) for p in engine.list_pools()])


@cli.command()
@click.option("--amount", required=True, help="质押数量")
@click.option("--apy", required=True, help="年化收益率（百分比，如 9.2）")
@click.option("--days", type=int, required=True, help="质押天数")
@click.option("--auto-compound", is_flag=True, default=False, help="按日复利")
def rewards(amount: str, apy: str, days: int, auto_compound: bool) -> None:
    """计算质押收益（18 位小数，向零截断）。"""
    setup_logging()
    logger = get_logger("defihub.main")

    try:
        principal = _parse_decimal(amount)
        rate = _parse_decimal(apy)
    except ValidationError as exc:
        _fail(logger, "rewards_failed", exc)
    if days < 0:
        _fail(logger, "rewards_failed", ValueError("days_must_be_non_negative"))

    as_of = datetime.now(timezone.utc)
    stake = Stake(
        stake_id=0,
        pool_id=0,
        user="cli",
        amount=principal,
        staked_at=as_of - timedelta(days=days),
        unlock_at=as_of,
    )
    pool = StakingPool(
        pool_id=0,
        name="cli",
        token="-",
        reward_token="-",
        apy=rate,
        tvl=principal,
        min_stake=Decimal("0"),
        lock_period_days=0,
        auto_compound=auto_compound,
    )
    click.echo(format_fixed(accrued_rewards(stake, pool, as_of), TOKEN_DP))


@cli.command()
def perps() -> None:
    """列出永续合约市场。"""
    setup_logging()
    engine = PerpEngine(build_store(get_settings()), get_settings())
    rows: list[dict[str, Any]] = [
        {
            "symbol": m.symbol,
            "indexPrice": format_fixed(m.index_price, PRICE_DP),
            "markPrice": format_fixed(m.mark_price, PRICE_DP),
            "fundingRate": f"{m.funding_rate:f}",
            "openInterest": format_fixed(m.open_interest, 2),
            "maxLeverage": f"{m.max_leverage:f}",
        }
        for m in engine.list_markets()
    ]
    click.echo(json.dumps(rows, indent=2))


@cli.command("liq-price")
@click.option("--side", type=click.Choice(["long", "short"]), required=True, help="方向")
@click.option("--entry", required=True, help="开仓价格")
@click.option("--size", required=True, help="仓位数量")
@click.option("--margin", required=True, help="保证金")
@click.option("--leverage", required=True, help="杠杆倍数")
def liq_price(side: str, entry: str, size: str, margin: str, leverage: str) -> None:
    """计算强平价格。"""
    setup_logging()
    logger = get_logger("defihub.main")

    try:
        price = liquidation_price(
            side,
            _parse_decimal(entry),
            _parse_decimal(size),
            _parse_decimal(leverage),
            _parse_decimal(margin),
        )
    except (DefiHubError, ValidationError) as exc:
        _fail(logger, "liq_price_failed", exc)

    click.echo(format_fixed(price, PRICE_DP))


@cli.command()
@click.argument("asset", required=False)
def prices(asset: str | None) -> None:
    """列出参考价格；指定 ASSET 时只显示该资产。"""
    setup_logging()
    logger = get_logger("defihub.main")
    service = AnalyticsService(build_store(get_settings()), get_settings())

    if asset is None:
        _echo_models([PriceResponse.from_price(p) for p in service.list_prices()])
        return

    try:
        price = service.get_price(asset)
    except DefiHubError as exc:
        _fail(logger, "price_lookup_failed", exc)

    _echo_models([PriceResponse.from_price(price)])


@cli.command()
def stats() -> None:
    """显示协议统计：TVL、成交量、资产数量。"""
    setup_logging()
    service = AnalyticsService(build_store(get_settings()), get_settings())
    _echo_models([ProtocolStatsResponse.from_stats(service.protocol_stats())])


@cli.command()
def status() -> None:

    """显示配置摘要。"""
    setup_logging()
    settings = get_settings()

    click.echo("=" * 50)
    click.echo("DeFiHub Core - Status")
    click.echo("=" * 50)
    click.echo()

    click.echo("[Lending]")
    click.echo(f"   Liquidation bonus: {settings.liquidation_bonus}")
    click.echo()

    click.echo("[Perpetuals]")
    click.echo(f"   Default max leverage: {settings.default_max_leverage}x")
    click.echo()

    click.echo("[Bridge]")
    click.echo(f"   Base fee rate: {settings.bridge_base_fee_rate}")
    click.echo(f"   Gas fee: {settings.bridge_gas_fee}")
    click.echo(f"   Settlement delay: {settings.bridge_settlement_delay_sec}s")
    click.echo()

    click.echo("[Logging]")
    click.echo(f"   Log level: {settings.log_level}")
    click.echo(f"   Log format: {settings.log_format.value}")
    click.echo(f"   Journal dir: {settings.journal_dir}")
    click.echo()
    click.echo("=" * 50)


@cli.command()
def check() -> None:
    """检查系统依赖和配置。"""
    setup_logging()
    logger = get_logger("defihub.main")

    click.echo("Checking system dependencies...")
    click.echo()

    all_ok = True

    # 检查必要的包
    packages = [
        ("pydantic", "Schema validation"),
        ("pydantic_settings", "Configuration"),
        ("structlog", "Structured logging"),
        ("click", "CLI framework"),
        ("tenacity", "Retry mechanism"),
    ]

    for pkg_name, desc in packages:
        try:
            __import__(pkg_name)
            click.echo(f"  [OK] {pkg_name} - {desc}")
        except ImportError:
            click.echo(f"  [MISSING] {pkg_name} - {desc}")
            all_ok = False

    click.echo()

    if all_ok:
        click.echo("[OK] All dependency checks passed")
    else:
        click.echo("[ERROR] Some dependencies missing. Run: pip install -e .")

    logger.info("dependency_check_completed", all_ok=all_ok)


def _parse_decimal(raw: str) -> Decimal:
    return _decimal_adapter.validate_python(raw)


def _echo_models(models: list[BaseModel]) -> None:
    click.echo(json.dumps([m.model_dump(by_alias=True) for m in models], indent=2))


def _fail(logger: Any, event: str, exc: Exception) -> NoReturn:
    code = getattr(exc, "code", type(exc).__name__)
    logger.error(event, code=code, error=str(exc))
    click.echo(f"Error: {exc}", err=True)
    sys.exit(1)


# 支持 python -m defihub.main 调用
if __name__ == "__main__":
    cli()
