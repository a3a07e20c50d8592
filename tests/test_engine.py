import asyncio

import pytest

from antigravity_bot.errors import PositionNotFoundError, PriceUnavailableError
from antigravity_bot.models import (
    ExitReason,
    Position,
    PositionSide,
    SignalAction,
    TickerData,
)
from antigravity_bot.orchestrator import TradingEngine
from antigravity_bot.storage import MemoryStore
from conftest import SLOW, FakeMarket, FakeSignals


@pytest.fixture
def engine():
    return TradingEngine(
        symbols=["BTCUSDT", "ETHUSDT"],
        market=FakeMarket(),
        signals=FakeSignals(),
        store=MemoryStore(),
        timings=SLOW,
        auto_mode=False,
        initial_symbol="BTCUSDT",
    )


def open_long(engine, symbol="BTCUSDT", entry=100.0):
    engine.ledger.debit(10.0)
    engine.ledger.add_position(
        Position(
            symbol=symbol, entry_price=entry, amount=1.0, leverage=10, initial_margin=10.0,
            side=PositionSide.LONG, take_profit=entry * 1.02, stop_loss=entry * 0.98,
            high_water_mark=entry,
        )
    )


def test_ticker_updates_prices_and_closes_on_target(engine):
    open_long(engine)
    assert engine.on_ticker(TickerData(symbol="BTCUSDT", price=101.0)) is None
    assert engine.prices["BTCUSDT"] == 101.0

    result = engine.on_ticker(TickerData(symbol="BTCUSDT", price=102.5))

    assert result.exit_reason == ExitReason.TAKE_PROFIT
    assert engine.ledger.get_position("BTCUSDT") is None
    decision = engine.scheduler.state.last_decision
    assert decision.action == SignalAction.WAIT
    assert decision.reasoning.startswith("Closed BTCUSDT")


def test_ticker_for_background_asset_is_monitored(engine):
    open_long(engine, symbol="ETHUSDT", entry=2000.0)
    result = engine.on_ticker(TickerData(symbol="ETHUSDT", price=1900.0))
    assert result.exit_reason == ExitReason.STOP_LOSS
    assert engine.scheduler.state.last_decision is None


def test_manual_close_needs_live_price(engine):
    open_long(engine)
    with pytest.raises(PriceUnavailableError):
        engine.manual_close("BTCUSDT")

    engine.prices["BTCUSDT"] = 100.5
    result = engine.manual_close("btcusdt")
    assert result.exit_reason == ExitReason.MANUAL
    with pytest.raises(PositionNotFoundError):
        engine.manual_close("BTCUSDT")


def test_portfolio_view(engine):
    open_long(engine)
    engine.prices["BTCUSDT"] = 101.0
    view = engine.portfolio()
    assert view["balance"] == pytest.approx(90.0)
    assert view["margin_in_use"] == pytest.approx(10.0)
    assert view["equity"] == pytest.approx(100.0)
    assert view["bankrupt"] is False
    assert view["positions"][0]["floating_pnl"] == pytest.approx(1.0)
    assert view["history"] == []


def test_bankrupt_only_without_open_positions(engine):
    open_long(engine)
    engine.ledger.debit(engine.ledger.balance)
    assert not engine.is_bankrupt
    engine.prices["BTCUSDT"] = 50.0
    engine.manual_close("BTCUSDT")
    assert engine.is_bankrupt


def test_reset(engine):
    open_long(engine)
    engine.reset()
    assert engine.ledger.balance == 100.0
    assert engine.ledger.positions() == []
    assert engine.scheduler.state.last_decision is None


def test_portfolio_history_limit_zero(engine):
    open_long(engine)
    engine.prices["BTCUSDT"] = 101.0
    engine.manual_close("BTCUSDT")
    assert engine.portfolio(history_limit=0)["history"] == []
    assert len(engine.portfolio()["history"]) == 1


@pytest.mark.asyncio
async def test_order_book_follows_active_symbol(engine):
    await engine._follow_order_book("BTCUSDT")
    assert engine.order_books["BTCUSDT"].bids[0].price == 99.9

    engine._running = True
    engine._restart_symbol_streams("ETHUSDT")
    assert "BTCUSDT" not in engine.order_books
    await asyncio.gather(*engine._symbol_tasks)
    assert engine.order_books["ETHUSDT"].asks[0].amount == 2.0
    await engine.stop()
