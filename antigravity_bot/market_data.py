"""Binance public market data: REST klines plus websocket streams.

Every stream is an async iterator that reconnects on failure, so consumers
can simply ``async for`` over it until they cancel the task.
"""
import asyncio
import json
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import httpx
import websockets

from .config import (
    BINANCE_API_BASE,
    BINANCE_WS_BASE,
    CANDLE_BUFFER_SIZE,
    CONTEXT_HISTORY_LIMIT,
    CONTEXT_INTERVALS,
    HTTP_TIMEOUT_SECONDS,
    WS_RECONNECT_SECONDS,
)
from .logging_config import setup_logger
from .models import Candle, OrderBook, OrderBookEntry, TickerData

logger = setup_logger("market_data")


class CandleBuffer:
    """Most recent candles of one symbol/timeframe, oldest dropped first."""

    def __init__(self, maxlen: int = CANDLE_BUFFER_SIZE, candles: Optional[Iterable[Candle]] = None):
        self.maxlen = maxlen
        self._candles: List[Candle] = []
        if candles:
            self.replace(candles)

    def replace(self, candles: Iterable[Candle]) -> None:
        self._candles = list(candles)[-self.maxlen:]

    def apply(self, candle: Candle) -> None:
        """Update the open bucket in place, or append when a new bucket starts."""
        if self._candles and self._candles[-1].time == candle.time:
            self._candles[-1] = candle
            return
        self._candles.append(candle)
        if len(self._candles) > self.maxlen:
            self._candles.pop(0)

    def clear(self) -> None:
        self._candles = []

    @property
    def last(self) -> Optional[Candle]:
        return self._candles[-1] if self._candles else None

    def to_list(self) -> List[Candle]:
        return list(self._candles)

    def __len__(self) -> int:
        return len(self._candles)


# ------------------------------------------------------------------
# Payload parsers
# ------------------------------------------------------------------

def parse_kline_row(row: List[Any]) -> Candle:
    # REST kline: [openTime, open, high, low, close, volume, closeTime, ...]
    return Candle(
        time=int(row[0]),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
    )


def parse_kline_message(message: Dict[str, Any]) -> Optional[Candle]:
    k = message.get("data", message).get("k")
    if not k:
        return None
    return Candle(
        time=int(k["t"]),
        open=float(k["o"]),
        high=float(k["h"]),
        low=float(k["l"]),
        close=float(k["c"]),
        volume=float(k["v"]),
    )


def parse_ticker_message(message: Dict[str, Any]) -> Optional[TickerData]:
    # combined streams wrap the payload in {"stream": ..., "data": {...}}
    data = message.get("data", message)
    if "s" not in data or "c" not in data:
        return None
    return TickerData(
        symbol=str(data["s"]).upper(),
        price=float(data["c"]),
        change_percent=float(data.get("P", 0.0)),
    )


def parse_depth_message(symbol: str, message: Dict[str, Any]) -> OrderBook:
    data = message.get("data", message)

    def _side(rows: List[List[str]]) -> List[OrderBookEntry]:
        return [OrderBookEntry(price=float(p), amount=float(a)) for p, a in rows]

    return OrderBook(
        symbol=symbol.upper(),
        bids=_side(data.get("bids", [])),
        asks=_side(data.get("asks", [])),
    )


# ------------------------------------------------------------------
# Client
# ------------------------------------------------------------------

class BinanceMarketData:
    def __init__(
        self,
        api_base: str = BINANCE_API_BASE,
        ws_base: str = BINANCE_WS_BASE,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        reconnect_delay: float = WS_RECONNECT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.ws_base = ws_base.rstrip("/")
        self.timeout = timeout
        self.reconnect_delay = reconnect_delay
        self.transport = transport

    async def fetch_history(self, symbol: str, interval: str = "1m", limit: int = 100) -> List[Candle]:
        """Closed + current candles, oldest first. Empty list on any failure."""
        params = {"symbol": symbol.upper(), "interval": interval, "limit": limit}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.get(f"{self.api_base}/klines", params=params)
            if r.status_code != 200:
                logger.warning(f"klines {symbol} {interval} -> status {r.status_code}: {r.text[:200]}")
                return []
            return [parse_kline_row(row) for row in r.json()]
        except (httpx.HTTPError, ValueError, IndexError, TypeError) as e:
            logger.error(f"Error fetching history {symbol} {interval}: {e}")
            return []

    async def fetch_multi_frame(
        self, symbol: str, intervals: Optional[List[str]] = None, limit: int = CONTEXT_HISTORY_LIMIT
    ) -> Dict[str, List[Candle]]:
        intervals = intervals or CONTEXT_INTERVALS
        results = await asyncio.gather(*(self.fetch_history(symbol, i, limit) for i in intervals))
        return dict(zip(intervals, results))

    async def _stream(self, path: str) -> AsyncIterator[Dict[str, Any]]:
        url = f"{self.ws_base}/{path}"
        while True:
            try:
                async with websockets.connect(url) as ws:
                    logger.info(f"✅ Stream connected: {path[:80]}")
                    async for raw in ws:
                        try:
                            yield json.loads(raw)
                        except json.JSONDecodeError:
                            logger.warning(f"Malformed frame on {path[:80]}")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"❌ Stream error {path[:80]}: {e}")
            await asyncio.sleep(self.reconnect_delay)
            logger.info(f"🔄 Reconnecting {path[:80]}")

    async def stream_multi_ticker(self, symbols: List[str]) -> AsyncIterator[TickerData]:
        streams = "/".join(f"{s.lower()}@ticker" for s in symbols)
        async for msg in self._stream(f"stream?streams={streams}"):
            ticker = parse_ticker_message(msg)
            if ticker:
                yield ticker

    async def stream_candles(self, symbol: str, interval: str) -> AsyncIterator[Candle]:
        async for msg in self._stream(f"ws/{symbol.lower()}@kline_{interval}"):
            candle = parse_kline_message(msg)
            if candle:
                yield candle

    async def stream_order_book(self, symbol: str) -> AsyncIterator[OrderBook]:
        async for msg in self._stream(f"ws/{symbol.lower()}@depth10@100ms"):
            yield parse_depth_message(symbol, msg)
