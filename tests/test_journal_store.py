from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from defihub.amm.engine import AmmEngine
from defihub.config import Settings
from defihub.journal.store import JournalStore
from defihub.store.seed import build_store


def test_append_and_load_recent(tmp_path: Path) -> None:
    journal = JournalStore(tmp_path)
    journal.append("supply", {"user": "alice", "asset": "ETH", "amount": Decimal("1.5")})
    journal.append("repay", {"user": "alice", "loan_id": 1})

    rows = journal.load_recent(1)
    assert [r["event_type"] for r in rows] == ["repay"]

    rows = journal.load_recent(10)
    assert [r["event_type"] for r in rows] == ["supply", "repay"]
    assert rows[0]["payload"]["amount"] == "1.5"
    assert journal.load_recent(0) == []


def test_unknown_event_type_is_rejected(tmp_path: Path) -> None:
    journal = JournalStore(tmp_path)
    with pytest.raises(ValueError):
        journal.append("withdraw_everything", {})


def test_swap_is_journaled(tmp_path: Path) -> None:
    settings = Settings(journal_dir=tmp_path)
    journal = JournalStore(settings.journal_dir)
    engine = AmmEngine(build_store(settings), settings, journal)

    trade = engine.swap("alice", "USDC", "USDT", Decimal("100"))

    rows = journal.load_recent(5)
    assert len(rows) == 1
    assert rows[0]["event_type"] == "swap"
    assert rows[0]["payload"]["trade_id"] == trade.trade_id
