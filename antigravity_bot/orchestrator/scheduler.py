import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel

from ..agents.master_ai_agent.client import SignalGenerator
from ..agents.position_manager.manager import PositionManager
from ..agents.technical_analyzer.snapshot import build_snapshots
from ..config import (
    ACTIVE_POSITION_ROTATE_SECONDS,
    AUTO_MODE,
    EXECUTION_DWELL_SECONDS,
    HISTORY_IN_PROMPT,
    HISTORY_LIMIT,
    HISTORY_RETRY_SECONDS,
    INSUFFICIENT_BALANCE_ROTATE_SECONDS,
    NO_DATA_ROTATE_SECONDS,
    NO_SIGNAL_ROTATE_SECONDS,
    PRIMARY_INTERVAL,
    RATE_LIMIT_COOLDOWN_SECONDS,
    WARMUP_SECONDS,
)
from ..errors import (
    InsufficientBalanceError,
    PositionExistsError,
    PriceUnavailableError,
    RateLimitError,
    SignalGenerationError,
)
from ..logging_config import setup_logger
from ..market_data import CandleBuffer
from ..models import (
    AIDecisionRecord,
    Candle,
    Position,
    SignalAction,
    SignalRequest,
    TradeDecision,
    TradeResult,
    ValidatedOrder,
    now_ms,
)
from ..storage import KeyValueStore, append_decision
from .gate import GateReason, SignalGate

logger = setup_logger("scan_scheduler")

Action = Callable[[], Awaitable[object]]
PriceLookup = Callable[[str], Optional[float]]


@dataclass
class ScanTimings:
    warmup: float = WARMUP_SECONDS
    history_retry: float = HISTORY_RETRY_SECONDS
    active_position: float = ACTIVE_POSITION_ROTATE_SECONDS
    no_data: float = NO_DATA_ROTATE_SECONDS
    no_signal: float = NO_SIGNAL_ROTATE_SECONDS
    insufficient_balance: float = INSUFFICIENT_BALANCE_ROTATE_SECONDS
    execution_dwell: float = EXECUTION_DWELL_SECONDS
    rate_limit_cooldown: float = RATE_LIMIT_COOLDOWN_SECONDS


class ScanPhase(str, Enum):
    IDLE = "IDLE"
    SCANNING = "SCANNING"
    EXECUTING = "EXECUTING"
    COOLING_DOWN = "COOLING_DOWN"
    ROTATING = "ROTATING"


class ScanResult(str, Enum):
    ACTIVE_POSITION = "ACTIVE_POSITION"
    RATE_LIMITED = "RATE_LIMITED"
    NO_DATA = "NO_DATA"
    NO_INDICATORS = "NO_INDICATORS"
    SIGNAL_FAILED = "SIGNAL_FAILED"
    SIGNAL_RATE_LIMITED = "SIGNAL_RATE_LIMITED"
    NOT_ACTIONABLE = "NOT_ACTIONABLE"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    EXECUTED = "EXECUTED"
    LOCKED = "LOCKED"
    ADVISORY = "ADVISORY"
    STALE = "STALE"


class EngineState(BaseModel):
    active_symbol: str
    phase: ScanPhase = ScanPhase.IDLE
    last_scan_at: Optional[float] = None
    is_auto_mode: bool = True
    is_execution_locked: bool = False
    generation: int = 0
    pending_action: Optional[str] = None
    last_decision: Optional[TradeDecision] = None
    validation_msg: Optional[str] = None


@dataclass
class ScanOutcome:
    result: ScanResult
    delay: Optional[float] = None
    position: Optional[Position] = None
    decision: Optional[TradeDecision] = None


def _wait(reasoning: str) -> TradeDecision:
    return TradeDecision(action=SignalAction.WAIT, reasoning=reasoning)


class ScanScheduler:
    """
    Scan/rotate state machine for one account:

        IDLE -> SCANNING -> {EXECUTING | COOLING_DOWN | ROTATING} -> IDLE

    Exactly one timer is pending at a time. Every timer remembers the
    generation it was armed in; entering a new asset or toggling auto mode
    bumps the generation, so a late timer from the previous asset is a no-op.
    """

    def __init__(
        self,
        symbols: List[str],
        market,
        signals: SignalGenerator,
        positions: PositionManager,
        gate: Optional[SignalGate] = None,
        timings: Optional[ScanTimings] = None,
        price_lookup: Optional[PriceLookup] = None,
        decision_store: Optional[KeyValueStore] = None,
        auto_mode: bool = AUTO_MODE,
        initial_symbol: Optional[str] = None,
    ):
        if not symbols:
            raise ValueError("at least one symbol is required")
        self.symbols = list(symbols)
        self.market = market
        self.signals = signals
        self.positions = positions
        self.gate = gate or SignalGate()
        self.timings = timings or ScanTimings()
        self.price_lookup = price_lookup or (lambda symbol: None)
        self.decision_store = decision_store
        self.candles = CandleBuffer()
        self.state = EngineState(
            active_symbol=initial_symbol or self.symbols[0],
            is_auto_mode=auto_mode,
        )
        self._timer: Optional[asyncio.Task] = None
        self._symbol_listeners: List[Callable[[str], None]] = []

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def snapshot(self) -> EngineState:
        state = self.state.model_copy(deep=True)
        state.last_scan_at = self.gate.last_scan_at
        return state

    def on_symbol_change(self, listener: Callable[[str], None]) -> None:
        self._symbol_listeners.append(listener)

    def on_candle(self, symbol: str, candle: Candle) -> None:
        if symbol.upper() == self.state.active_symbol:
            self.candles.apply(candle)

    def on_position_closed(self, result: TradeResult) -> None:
        if result.symbol == self.state.active_symbol:
            self.state.last_decision = _wait(f"Closed {result.symbol}. Realised: {result.pnl:.2f} USDT")

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _cancel_timer(self) -> None:
        if self._timer is not None and self._timer is not asyncio.current_task():
            self._timer.cancel()
        self._timer = None
        self.state.pending_action = None

    def _invalidate(self) -> None:
        """Drop the pending timer and any dwell lock; stale callbacks become no-ops."""
        self.state.generation += 1
        self._cancel_timer()
        self.state.is_execution_locked = False

    def _schedule(self, delay: float, name: str, action: Action) -> None:
        self._cancel_timer()
        generation = self.state.generation
        self.state.pending_action = name
        self._timer = asyncio.create_task(self._fire(delay, generation, name, action))

    async def _fire(self, delay: float, generation: int, name: str, action: Action) -> None:
        await asyncio.sleep(delay)
        if generation != self.state.generation:
            logger.debug(f"Stale timer '{name}' ignored (gen {generation} != {self.state.generation})")
            return
        if self._timer is asyncio.current_task():
            self._timer = None
            self.state.pending_action = None
        try:
            await action()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Scheduler action '{name}' failed: {e}")
            if self.state.is_auto_mode and not self.state.is_execution_locked:
                self._schedule(self.timings.no_signal, "rotate", self.rotate)

    def _schedule_if_auto(self, delay: float, name: str, action: Action) -> None:
        if self.state.is_auto_mode:
            self._schedule(delay, name, action)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        logger.info(f"Scheduler starting on {self.state.active_symbol} (auto={self.state.is_auto_mode})")
        await self.enter_symbol(self.state.active_symbol)

    async def stop(self) -> None:
        self._invalidate()
        self.state.phase = ScanPhase.IDLE

    def set_auto_mode(self, enabled: bool) -> None:
        if enabled == self.state.is_auto_mode:
            return
        self.state.is_auto_mode = enabled
        logger.info(f"Auto mode {'ON' if enabled else 'OFF'}")
        if not enabled:
            self._invalidate()
            self.state.phase = ScanPhase.IDLE
            return

        symbol = self.state.active_symbol
        if len(self.candles) == 0:
            self._schedule(0, "enter", lambda: self.enter_symbol(symbol))
        else:
            self._schedule(self.timings.warmup, "scan", self.scan)

    async def select_symbol(self, symbol: str) -> bool:
        symbol = symbol.upper()
        if symbol not in self.symbols:
            raise ValueError(f"unsupported symbol {symbol}")
        return await self.enter_symbol(symbol)

    async def enter_symbol(self, symbol: str) -> bool:
        """Switch the scanned asset and load its history. False when the feed failed."""
        self._invalidate()
        generation = self.state.generation
        changed = symbol != self.state.active_symbol
        self.state.active_symbol = symbol
        self.state.phase = ScanPhase.IDLE
        self.state.last_decision = _wait(f"Loading data for {symbol}...")
        self.state.validation_msg = None
        self.candles.clear()

        if changed:
            for listener in self._symbol_listeners:
                try:
                    listener(symbol)
                except Exception as e:
                    logger.error(f"Symbol listener failed: {e}")

        history = await self.market.fetch_history(symbol, PRIMARY_INTERVAL, HISTORY_LIMIT)
        if generation != self.state.generation:
            return False

        if not history:
            logger.warning(f"Failed to initialise {symbol}: empty history")
            self.state.validation_msg = "Feed failure"
            self.state.last_decision = _wait("Feed error. Retrying elsewhere...")
            self._schedule_if_auto(self.timings.history_retry, "rotate", self.rotate)
            return False

        self.candles.replace(history)
        self._schedule_if_auto(self.timings.warmup, "scan", self.scan)
        return True

    async def rotate(self) -> Optional[str]:
        if self.state.is_execution_locked or not self.state.is_auto_mode:
            return None
        self.state.phase = ScanPhase.ROTATING
        try:
            index = self.symbols.index(self.state.active_symbol)
        except ValueError:
            index = -1
        next_symbol = self.symbols[(index + 1) % len(self.symbols)]
        logger.info(f">> rotating to {next_symbol}")
        await self.enter_symbol(next_symbol)
        return next_symbol

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------

    def _live_price(self, symbol: str) -> Optional[float]:
        price = self.price_lookup(symbol)
        if price:
            return price
        last = self.candles.last
        return last.close if last else None

    def _finish(
        self, result: ScanResult, delay: Optional[float], name: str, action: Action, **kwargs
    ) -> ScanOutcome:
        if delay is not None:
            self._schedule_if_auto(delay, name, action)
        if self.state.phase != ScanPhase.COOLING_DOWN:
            self.state.phase = ScanPhase.IDLE
        return ScanOutcome(result=result, delay=delay, **kwargs)

    def _record(self, symbol: str, decision: TradeDecision) -> None:
        self.state.last_decision = decision
        if self.decision_store is None:
            return
        try:
            append_decision(self.decision_store, AIDecisionRecord(ts=now_ms(), symbol=symbol, decision=decision))
        except Exception as e:
            logger.error(f"Could not store decision for {symbol}: {e}")

    async def scan(self) -> ScanOutcome:
        if self.state.is_execution_locked:
            return ScanOutcome(result=ScanResult.LOCKED)

        generation = self.state.generation
        symbol = self.state.active_symbol
        self.state.phase = ScanPhase.SCANNING

        position = self.positions.ledger.get_position(symbol)
        pre = self.gate.precheck(symbol, position, self._live_price(symbol), len(self.candles) > 0)
        if pre is not None:
            self.state.validation_msg = pre.message or None
            if pre.reason == GateReason.ACTIVE_POSITION:
                self.state.last_decision = pre.decision
                return self._finish(
                    ScanResult.ACTIVE_POSITION, self.timings.active_position, "rotate", self.rotate,
                    decision=pre.decision,
                )
            if pre.reason == GateReason.RATE_LIMITED:
                self.state.phase = ScanPhase.COOLING_DOWN
                if self.state.last_decision is None:
                    self.state.last_decision = _wait(f"Cooling down... {pre.retry_in:.1f}s")
                return self._finish(ScanResult.RATE_LIMITED, pre.retry_in, "scan", self.scan)
            self.state.last_decision = pre.decision
            return self._finish(
                ScanResult.NO_DATA, self.timings.no_data, "rotate", self.rotate, decision=pre.decision
            )

        self.state.validation_msg = None
        context = await self.market.fetch_multi_frame(symbol)
        if generation != self.state.generation:
            return ScanOutcome(result=ScanResult.STALE)

        frames = {PRIMARY_INTERVAL: self.candles.to_list(), **context}
        snapshots = build_snapshots(frames)
        if snapshots is None:
            decision = _wait("Not enough history on every timeframe. Moving on...")
            self.state.last_decision = decision
            return self._finish(
                ScanResult.NO_INDICATORS, self.timings.no_signal, "rotate", self.rotate, decision=decision
            )

        request = SignalRequest(
            symbol=symbol,
            snapshots=snapshots,
            balance=self.positions.ledger.balance,
            position=None,
            history=self.positions.ledger.history(HISTORY_IN_PROMPT),
        )

        try:
            decision = await self.signals.decide(request)
        except RateLimitError as e:
            if generation != self.state.generation:
                return ScanOutcome(result=ScanResult.STALE)
            logger.warning(f"Signal generator rate limited: {e}")
            decision = _wait(
                f"API quota exhausted (429). Pausing {self.timings.rate_limit_cooldown:.0f}s..."
            )
            self.state.last_decision = decision
            self.state.validation_msg = "COOLDOWN 429"
            self.state.phase = ScanPhase.COOLING_DOWN
            return self._finish(
                ScanResult.SIGNAL_RATE_LIMITED, self.timings.rate_limit_cooldown, "rotate", self.rotate,
                decision=decision,
            )
        except SignalGenerationError as e:
            if generation != self.state.generation:
                return ScanOutcome(result=ScanResult.STALE)
            logger.error(f"Signal generation failed for {symbol}: {e}")
            decision = _wait("Signal generation failed. Moving on...")
            self.state.last_decision = decision
            return self._finish(
                ScanResult.SIGNAL_FAILED, self.timings.no_signal, "rotate", self.rotate, decision=decision
            )

        if generation != self.state.generation:
            return ScanOutcome(result=ScanResult.STALE)

        self._record(symbol, decision)
        if not self.state.is_auto_mode:
            self.state.phase = ScanPhase.IDLE
            return ScanOutcome(result=ScanResult.ADVISORY, decision=decision)

        price = self._live_price(symbol)
        if not price:
            return self._finish(ScanResult.NO_DATA, self.timings.no_data, "rotate", self.rotate)

        verdict = self.gate.validate(symbol, decision, price)
        if not verdict.should_execute:
            self.state.last_decision = verdict.decision
            self.state.validation_msg = verdict.message or None
            result = (
                ScanResult.LOW_CONFIDENCE
                if verdict.reason == GateReason.LOW_CONFIDENCE
                else ScanResult.NOT_ACTIONABLE
            )
            return self._finish(result, self.timings.no_signal, "rotate", self.rotate, decision=verdict.decision)

        return self._execute(verdict.order, decision)

    async def request_scan(self) -> ScanOutcome:
        """Scan the active asset now, loading its history first when the buffer is empty.

        In manual mode this is the only way a scan starts; the decision is
        recorded but never executed.
        """
        if len(self.candles) == 0:
            if not await self.enter_symbol(self.state.active_symbol):
                return ScanOutcome(result=ScanResult.NO_DATA, decision=self.state.last_decision)
        return await self.scan()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _execute(self, order: ValidatedOrder, decision: TradeDecision) -> ScanOutcome:
        self._cancel_timer()
        self.state.is_execution_locked = True
        self.state.phase = ScanPhase.EXECUTING
        try:
            position = self.positions.open(order)
        except InsufficientBalanceError as e:
            logger.warning(f"Skipping {order.symbol}: {e}")
            self.state.is_execution_locked = False
            self.state.validation_msg = "No funds"
            return self._finish(
                ScanResult.INSUFFICIENT_BALANCE, self.timings.insufficient_balance, "rotate", self.rotate,
                decision=decision,
            )
        except PositionExistsError as e:
            logger.warning(f"Skipping {order.symbol}: {e}")
            self.state.is_execution_locked = False
            return self._finish(
                ScanResult.ACTIVE_POSITION, self.timings.active_position, "rotate", self.rotate,
                decision=decision,
            )
        except PriceUnavailableError as e:
            logger.warning(f"Skipping {order.symbol}: {e}")
            self.state.is_execution_locked = False
            return self._finish(ScanResult.NO_DATA, self.timings.no_data, "rotate", self.rotate)

        self._schedule(self.timings.execution_dwell, "release_lock", self._release_and_rotate)
        return ScanOutcome(
            result=ScanResult.EXECUTED,
            delay=self.timings.execution_dwell,
            position=position,
            decision=decision,
        )

    async def _release_and_rotate(self) -> None:
        self.state.is_execution_locked = False
        self.state.phase = ScanPhase.IDLE
        await self.rotate()


