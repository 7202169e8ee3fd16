from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

from defihub.config import LogFormat, Settings


def test_defaults() -> None:
    settings = Settings(journal_dir="data/journal")
    assert settings.liquidation_bonus == Decimal("0.05")
    assert settings.default_max_leverage == Decimal("20")
    assert settings.bridge_base_fee_rate == Decimal("0.001")
    assert settings.bridge_gas_fee == Decimal("0.005")
    assert settings.log_format == LogFormat.CONSOLE
    assert settings.journal_dir == Path("data/journal")


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LIQUIDATION_BONUS", "0.1")
    monkeypatch.setenv("LOG_FORMAT", "json")
    monkeypatch.setenv("BRIDGE_SETTLEMENT_DELAY_SEC", "0.5")
    settings = Settings()
    assert settings.liquidation_bonus == Decimal("0.1")
    assert settings.log_format == LogFormat.JSON
    assert settings.bridge_settlement_delay_sec == 0.5


def test_out_of_range_values_are_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(liquidation_bonus=Decimal("0.9"))
    with pytest.raises(ValidationError):
        Settings(bridge_base_fee_rate=Decimal("1"))


def test_ensure_directories(tmp_path: Path) -> None:
    settings = Settings(journal_dir=tmp_path / "nested" / "journal")
    settings.ensure_directories()
    assert settings.journal_dir.is_dir()
