import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# make the project root importable without installing the package
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from antigravity_bot.models import Candle, OrderBook, OrderBookEntry, SignalAction, TradeDecision  # noqa: E402
from antigravity_bot.orchestrator import ScanTimings  # noqa: E402

# long enough that no timer fires while a test inspects state
SLOW = ScanTimings(
    warmup=100, history_retry=100, active_position=100, no_data=100, no_signal=100,
    insufficient_balance=100, execution_dwell=100, rate_limit_cooldown=100,
)


def make_candles(closes: List[float], spread: float = 1.0, start: int = 0) -> List[Candle]:
    """One-minute candles around the given closes; high/low sit spread/2 away."""
    half = spread / 2
    candles = []
    for i, close in enumerate(closes):
        open_ = closes[i - 1] if i else close
        candles.append(
            Candle(
                time=start + i * 60_000,
                open=open_,
                high=max(open_, close) + half,
                low=min(open_, close) - half,
                close=close,
                volume=10.0,
            )
        )
    return candles


def trending_closes(n: int = 60, start: float = 100.0, step: float = 0.5) -> List[float]:
    # mostly up with a pullback every fourth bar so RSI stays below 100
    closes = [start]
    for i in range(1, n):
        closes.append(closes[-1] - step if i % 4 == 0 else closes[-1] + step)
    return closes


class FakeMarket:
    def __init__(self, history: Optional[Dict[str, List[Candle]]] = None, context_size: int = 50):
        self.history = history if history is not None else {}
        self.context_size = context_size
        self.history_calls: List[str] = []
        self.multi_frame_calls: List[str] = []

    async def fetch_history(self, symbol: str, interval: str = "1m", limit: int = 100) -> List[Candle]:
        self.history_calls.append(symbol)
        return list(self.history.get(symbol, make_candles(trending_closes(limit))))

    async def fetch_multi_frame(self, symbol: str, intervals=None, limit: int = 50) -> Dict[str, List[Candle]]:
        self.multi_frame_calls.append(symbol)
        candles = make_candles(trending_closes(self.context_size))
        return {"5m": candles, "15m": candles}

    async def stream_candles(self, symbol: str, interval: str):
        for candle in make_candles([100.0, 101.0]):
            yield candle

    async def stream_order_book(self, symbol: str):
        yield OrderBook(
            symbol=symbol.upper(),
            bids=[OrderBookEntry(price=99.9, amount=1.0)],
            asks=[OrderBookEntry(price=100.1, amount=2.0)],
        )


class FakeSignals:
    def __init__(self, decision: Optional[TradeDecision] = None, error: Optional[Exception] = None):
        self.decision = decision
        self.error = error
        self.requests = []

    async def decide(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.decision or TradeDecision(action=SignalAction.WAIT)


@pytest.fixture
def candles_60():
    return make_candles(trending_closes(60))
