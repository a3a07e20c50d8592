import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..agents.position_manager.manager import floating_pnl
from ..config import (
    CONFIDENCE_FLOOR,
    FALLBACK_STOP_PCT,
    FALLBACK_TAKE_PROFIT_PCT,
    MIN_AI_INTERVAL_SECONDS,
    MIN_TARGET_DISTANCE,
)
from ..logging_config import setup_logger
from ..models import Position, SignalAction, TradeDecision, ValidatedOrder

logger = setup_logger("signal_gate")

RATE_LIMIT_SLACK_SECONDS = 0.5


class GateReason(str, Enum):
    ACTIVE_POSITION = "ACTIVE_POSITION"
    RATE_LIMITED = "RATE_LIMITED"
    NO_DATA = "NO_DATA"
    NOT_ACTIONABLE = "NOT_ACTIONABLE"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    EXECUTE = "EXECUTE"


@dataclass
class GateResult:
    reason: GateReason
    decision: Optional[TradeDecision] = None
    order: Optional[ValidatedOrder] = None
    retry_in: Optional[float] = None
    message: str = ""

    @property
    def should_execute(self) -> bool:
        return self.reason == GateReason.EXECUTE and self.order is not None


class SignalGate:
    """Decides whether a scan may request a signal and whether a decision may trade.

    `precheck` runs before the signal call (active position, rate limit,
    data availability); `validate` runs on the returned decision (confidence
    floor, stop/target distance). The first matching rule wins.

    Stops closer than `min_target_distance` of the execution price, or on
    the wrong side of it, are widened to `fallback_stop_pct` rather than
    rejected. Take-profits get the same treatment with
    `fallback_take_profit_pct`.
    """

    def __init__(
        self,
        min_interval: float = MIN_AI_INTERVAL_SECONDS,
        confidence_floor: float = CONFIDENCE_FLOOR,
        min_target_distance: float = MIN_TARGET_DISTANCE,
        fallback_stop_pct: float = FALLBACK_STOP_PCT,
        fallback_take_profit_pct: float = FALLBACK_TAKE_PROFIT_PCT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval = min_interval
        self.confidence_floor = confidence_floor
        self.min_target_distance = min_target_distance
        self.fallback_stop_pct = fallback_stop_pct
        self.fallback_take_profit_pct = fallback_take_profit_pct
        self.clock = clock
        self.last_scan_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Before the signal call
    # ------------------------------------------------------------------

    def precheck(
        self,
        symbol: str,
        position: Optional[Position],
        live_price: Optional[float],
        has_candles: bool,
    ) -> Optional[GateResult]:
        """None means the scan may go ahead; the call is then counted for rate limiting."""
        if position is not None:
            price = live_price or position.entry_price
            pnl = floating_pnl(position, price)
            hold = TradeDecision(
                action=SignalAction.HOLD,
                confidence=100,
                leverage=position.leverage,
                stop_loss=position.stop_loss,
                take_profit=position.take_profit,
                reasoning=(
                    f"Managing {position.side.value} position on {symbol}. "
                    f"Floating PnL: {pnl:.2f} USDT."
                ),
            )
            return GateResult(GateReason.ACTIVE_POSITION, decision=hold, message="Monitoring position")

        now = self.clock()
        if self.last_scan_at is not None:
            elapsed = now - self.last_scan_at
            if elapsed < self.min_interval:
                retry_in = self.min_interval - elapsed + RATE_LIMIT_SLACK_SECONDS
                return GateResult(
                    GateReason.RATE_LIMITED,
                    retry_in=retry_in,
                    message=f"Wait: {retry_in:.1f}s",
                )

        if not has_candles:
            wait = TradeDecision(
                action=SignalAction.WAIT,
                reasoning=f"Data feed interrupted for {symbol}. Moving on...",
            )
            return GateResult(GateReason.NO_DATA, decision=wait, message="No data")

        self.last_scan_at = now
        return None

    # ------------------------------------------------------------------
    # After the signal call
    # ------------------------------------------------------------------

    def validate(
        self,
        symbol: str,
        decision: TradeDecision,
        execution_price: float,
    ) -> GateResult:
        if not decision.is_actionable:
            return GateResult(GateReason.NOT_ACTIONABLE, decision=decision)

        if decision.confidence < self.confidence_floor:
            skipped = decision.model_copy(
                update={
                    "reasoning": f"[SKIPPED: confidence < {self.confidence_floor:.0f}%] {decision.reasoning}"
                }
            )
            return GateResult(
                GateReason.LOW_CONFIDENCE,
                decision=skipped,
                message=f"Low confidence: {decision.confidence:.0f}%",
            )

        is_long = decision.action == SignalAction.BUY
        stop_loss = self._safe_stop(is_long, decision.stop_loss, execution_price)
        take_profit = self._safe_take_profit(is_long, decision.take_profit, execution_price)
        if stop_loss != decision.stop_loss:
            logger.info(f"{symbol}: stop {decision.stop_loss} widened to {stop_loss:.6f}")
        if take_profit != decision.take_profit:
            logger.info(f"{symbol}: take-profit {decision.take_profit} replaced with {take_profit:.6f}")

        kelly = decision.quant_metrics.kelly_fraction if decision.quant_metrics else None
        order = ValidatedOrder(
            symbol=symbol,
            action=decision.action,
            leverage=decision.leverage,
            stop_loss=stop_loss,
            take_profit=take_profit,
            execution_price=execution_price,
            kelly_fraction=kelly,
        )
        return GateResult(GateReason.EXECUTE, decision=decision, order=order)

    def _safe_stop(self, is_long: bool, stop: float, price: float) -> float:
        min_distance = price * self.min_target_distance
        if is_long:
            if 0 < stop < price and price - stop >= min_distance:
                return stop
            return price * (1 - self.fallback_stop_pct)
        if stop > price and stop - price >= min_distance:
            return stop
        return price * (1 + self.fallback_stop_pct)

    def _safe_take_profit(self, is_long: bool, target: float, price: float) -> float:
        min_distance = price * self.min_target_distance
        if is_long:
            if target > price and target - price >= min_distance:
                return target
            return price * (1 + self.fallback_take_profit_pct)
        if 0 < target < price and price - target >= min_distance:
            return target
        return price * (1 - self.fallback_take_profit_pct)
