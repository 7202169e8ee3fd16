from click.testing import CliRunner

from defihub.main import cli


def test_cli_version() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_cli_quote_smoke() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["quote", "ETH", "USDC", "100"])
    assert result.exit_code == 0
    assert '"fee": "0.300000"' in result.output
    assert '"amountAfterFee": "99.700000"' in result.output


def test_cli_quote_unknown_pair_fails() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["quote", "ETH", "WBTC", "1"])
    assert result.exit_code == 1


def test_cli_rewards() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["rewards", "--amount", "1000", "--apy", "9.2", "--days", "30"])
    assert result.exit_code == 0
    assert "7.561643835616438350" in result.output


def test_cli_liquidation_price() -> None:
    runner = CliRunner()
    args = ["liq-price", "--side", "long", "--entry", "2500", "--size", "1"]
    result = runner.invoke(cli, [*args, "--margin", "250", "--leverage", "10"])
    assert result.exit_code == 0
    assert "2475.000000" in result.output


def test_cli_listings() -> None:
    runner = CliRunner()
    for command in ("pools", "markets", "staking-pools", "perps", "status"):
        result = runner.invoke(cli, [command])
        assert result.exit_code == 0, command


def test_cli_prices() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["prices"])
    assert result.exit_code == 0
    assert '"asset": "BTC"' in result.output

    result = runner.invoke(cli, ["prices", "ETH"])
    assert result.exit_code == 0
    assert '"price": "2500.000000"' in result.output


def test_cli_prices_unknown_asset_fails() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["prices", "DOGE"])
    assert result.exit_code == 1


def test_cli_stats() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["stats"])
    assert result.exit_code == 0
    assert '"ammLiquidity": "39000000.00"' in result.output
