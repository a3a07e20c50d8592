import asyncio
from typing import Any, Dict, List, Optional

from ..agents.master_ai_agent.client import LLMSignalGenerator, SignalGenerator
from ..agents.position_manager.ledger import PortfolioLedger
from ..agents.position_manager.manager import PositionManager, floating_pnl
from ..config import AUTO_MODE, DEFAULT_SYMBOL, PRIMARY_INTERVAL, SYMBOLS
from ..logging_config import setup_logger
from ..market_data import BinanceMarketData
from ..models import OrderBook, TickerData, TradeResult
from ..storage import JsonFileStore, KeyValueStore
from .gate import SignalGate
from .scheduler import ScanScheduler, ScanTimings

logger = setup_logger("engine")


class TradingEngine:
    """Wires market data, signal generation, risk and persistence for one paper account.

    Two independent paths share the PositionManager:
    - the scan path, driven by ScanScheduler timers
    - the tick path, fed by the multi-symbol ticker stream for every tracked asset
    """

    def __init__(
        self,
        symbols: Optional[List[str]] = None,
        market=None,
        signals: Optional[SignalGenerator] = None,
        store: Optional[KeyValueStore] = None,
        gate: Optional[SignalGate] = None,
        timings: Optional[ScanTimings] = None,
        auto_mode: bool = AUTO_MODE,
        initial_symbol: Optional[str] = None,
    ):
        self.symbols = [s.upper() for s in (symbols or SYMBOLS)]
        self.market = market or BinanceMarketData()
        self.store = store if store is not None else JsonFileStore()
        self.ledger = PortfolioLedger(self.store)
        self.positions = PositionManager(self.ledger)
        self.prices: Dict[str, float] = {}
        self.tickers: Dict[str, TickerData] = {}
        self.order_books: Dict[str, OrderBook] = {}

        initial = initial_symbol or (DEFAULT_SYMBOL if DEFAULT_SYMBOL in self.symbols else self.symbols[0])
        self.scheduler = ScanScheduler(
            symbols=self.symbols,
            market=self.market,
            signals=signals or LLMSignalGenerator(),
            positions=self.positions,
            gate=gate,
            timings=timings,
            price_lookup=self.prices.get,
            decision_store=self.store,
            auto_mode=auto_mode,
            initial_symbol=initial,
        )
        self.positions.add_close_listener(self.scheduler.on_position_closed)
        self.scheduler.on_symbol_change(self._restart_symbol_streams)

        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._symbol_tasks: List[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Tick path
    # ------------------------------------------------------------------

    def on_ticker(self, ticker: TickerData) -> Optional[TradeResult]:
        self.prices[ticker.symbol] = ticker.price
        self.tickers[ticker.symbol] = ticker
        try:
            return self.positions.on_tick(ticker.symbol, ticker.price)
        except Exception as e:
            logger.error(f"❌ Tick handling failed for {ticker.symbol}: {e}")
            return None

    async def _monitor_prices(self) -> None:
        async for ticker in self.market.stream_multi_ticker(self.symbols):
            self.on_ticker(ticker)

    async def _follow_candles(self, symbol: str) -> None:
        async for candle in self.market.stream_candles(symbol, PRIMARY_INTERVAL):
            self.scheduler.on_candle(symbol, candle)

    async def _follow_order_book(self, symbol: str) -> None:
        async for book in self.market.stream_order_book(symbol):
            self.order_books[book.symbol] = book

    def _start_symbol_streams(self, symbol: str) -> None:
        self._symbol_tasks = [
            asyncio.create_task(self._follow_candles(symbol)),
            asyncio.create_task(self._follow_order_book(symbol)),
        ]

    def _restart_symbol_streams(self, symbol: str) -> None:
        if not self._running:
            return
        for task in self._symbol_tasks:
            task.cancel()
        self.order_books.clear()
        self._start_symbol_streams(symbol)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        logger.info(f"Engine starting | symbols={self.symbols} balance={self.ledger.balance:.2f}")
        self._tasks.append(asyncio.create_task(self._monitor_prices()))
        self._start_symbol_streams(self.scheduler.state.active_symbol)
        self._tasks.append(asyncio.create_task(self.scheduler.start()))

    async def stop(self) -> None:
        self._running = False
        await self.scheduler.stop()
        tasks = self._tasks + self._symbol_tasks
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []
        self._symbol_tasks = []
        logger.info("Engine stopped")

    # ------------------------------------------------------------------
    # Controls & read models
    # ------------------------------------------------------------------

    def manual_close(self, symbol: str) -> TradeResult:
        symbol = symbol.upper()
        return self.positions.manual_close(symbol, self.prices.get(symbol))

    def reset(self) -> None:
        self.ledger.reset()
        self.scheduler.state.last_decision = None
        self.scheduler.state.validation_msg = None

    @property
    def is_bankrupt(self) -> bool:
        return self.ledger.balance <= 0 and not self.ledger.positions()

    def portfolio(self, history_limit: int = 50) -> Dict[str, Any]:
        view = self.ledger.snapshot(history_limit)
        open_positions = []
        for p in view["positions"]:
            price = self.prices.get(p.symbol)
            open_positions.append(
                {
                    **p.model_dump(mode="json"),
                    "last_price": price,
                    "floating_pnl": floating_pnl(p, price) if price else None,
                }
            )
        return {
            "balance": view["balance"],
            "margin_in_use": view["margin_in_use"],
            "equity": view["equity"],
            "bankrupt": view["balance"] <= 0 and not view["positions"],
            "positions": open_positions,
            "history": [t.model_dump(mode="json") for t in view["history"]],
        }
