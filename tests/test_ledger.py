import pytest

from antigravity_bot.agents.position_manager import PortfolioLedger
from antigravity_bot.models import (
    ExitReason,
    Position,
    PositionSide,
    TradeOutcome,
    TradeResult,
)
from antigravity_bot.storage import BALANCE_KEY, HISTORY_KEY, POSITIONS_KEY, MemoryStore


def position(symbol="ETHUSDT", margin=10.0):
    return Position(
        symbol=symbol, entry_price=2000.0, amount=0.05, leverage=10, initial_margin=margin,
        side=PositionSide.LONG, take_profit=2100.0, stop_loss=1950.0, high_water_mark=2000.0,
    )


def result(symbol="ETHUSDT", pnl=1.5):
    return TradeResult(
        id="abc123def", symbol=symbol, side=PositionSide.LONG, entry_price=2000.0,
        exit_price=2030.0, pnl=pnl, outcome=TradeOutcome.WIN, exit_reason=ExitReason.TAKE_PROFIT,
    )


def test_fresh_ledger_uses_initial_balance():
    ledger = PortfolioLedger(MemoryStore(), initial_balance=100.0)
    assert ledger.balance == 100.0
    assert ledger.positions() == []
    assert ledger.history() == []
    assert ledger.equity() == 100.0


def test_state_survives_reload():
    store = MemoryStore()
    ledger = PortfolioLedger(store, initial_balance=100.0)
    ledger.debit(10.0)
    ledger.add_position(position())
    ledger.append_result(result())

    reloaded = PortfolioLedger(store, initial_balance=100.0)
    assert reloaded.balance == pytest.approx(90.0)
    assert reloaded.get_position("ETHUSDT") == ledger.get_position("ETHUSDT")
    assert reloaded.history()[0].pnl == 1.5


def test_corrupt_entries_are_skipped():
    store = MemoryStore(
        {
            BALANCE_KEY: "not-a-number",
            POSITIONS_KEY: [{"symbol": "BTCUSDT"}, position().model_dump(mode="json")],
            HISTORY_KEY: [{"pnl": "x"}],
        }
    )
    ledger = PortfolioLedger(store, initial_balance=100.0)
    assert ledger.balance == 100.0
    assert [p.symbol for p in ledger.positions()] == ["ETHUSDT"]
    assert ledger.history() == []


def test_debit_beyond_balance_is_refused():
    ledger = PortfolioLedger(MemoryStore(), initial_balance=5.0)
    with pytest.raises(ValueError):
        ledger.debit(6.0)
    assert ledger.balance == 5.0


def test_credit_clamps_at_zero():
    ledger = PortfolioLedger(MemoryStore(), initial_balance=5.0)
    assert ledger.credit(-8.0) == 0.0


def test_get_position_returns_a_copy():
    ledger = PortfolioLedger(MemoryStore())
    ledger.add_position(position())
    copy = ledger.get_position("ETHUSDT")
    copy.stop_loss = 1.0
    assert ledger.get_position("ETHUSDT").stop_loss == 1950.0


def test_margin_and_equity():
    ledger = PortfolioLedger(MemoryStore(), initial_balance=100.0)
    ledger.debit(10.0)
    ledger.add_position(position(margin=10.0))
    ledger.debit(15.0)
    ledger.add_position(position(symbol="SOLUSDT", margin=15.0))
    assert ledger.margin_in_use() == pytest.approx(25.0)
    assert ledger.equity() == pytest.approx(100.0)


def test_history_limit_keeps_most_recent():
    ledger = PortfolioLedger(MemoryStore())
    for pnl in (1.0, 2.0, 3.0):
        ledger.append_result(result(pnl=pnl))
    assert [t.pnl for t in ledger.history(2)] == [2.0, 3.0]


def test_reset_restores_defaults():
    store = MemoryStore()
    ledger = PortfolioLedger(store, initial_balance=100.0)
    ledger.debit(10.0)
    ledger.add_position(position())
    ledger.append_result(result())

    ledger.reset()

    assert ledger.balance == 100.0
    assert ledger.positions() == []
    assert ledger.history() == []
    assert store.load(BALANCE_KEY) == 100.0
    assert store.load(POSITIONS_KEY) == []


def test_history_limit_zero_is_empty():
    ledger = PortfolioLedger(MemoryStore())
    ledger.append_result(result())
    assert ledger.history(0) == []
    assert len(ledger.history()) == 1


def test_history_returns_copies():
    ledger = PortfolioLedger(MemoryStore())
    ledger.append_result(result(pnl=1.5))
    ledger.history()[0].pnl = -99.0
    assert ledger.history()[0].pnl == 1.5


def test_snapshot_reads_everything_at_once():
    ledger = PortfolioLedger(MemoryStore(), initial_balance=100.0)
    ledger.debit(10.0)
    ledger.add_position(position())
    for pnl in (1.0, 2.0):
        ledger.append_result(result(pnl=pnl))

    view = ledger.snapshot(history_limit=1)

    assert view["balance"] == pytest.approx(90.0)
    assert view["margin_in_use"] == pytest.approx(10.0)
    assert view["equity"] == pytest.approx(100.0)
    assert [p.symbol for p in view["positions"]] == ["ETHUSDT"]
    assert [t.pnl for t in view["history"]] == [2.0]
