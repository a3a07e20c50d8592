import threading
from typing import Callable, List, Optional

from ...config import (
    DEFAULT_MARGIN_FRACTION,
    LIQUIDATION_THRESHOLD,
    MAX_LEVERAGE,
    MAX_MARGIN,
    MIN_LEVERAGE,
    MIN_MARGIN,
    TRADING_FEE_RATE,
    TRAILING_STOP_GAP,
)
from ...errors import (
    InsufficientBalanceError,
    PositionExistsError,
    PositionNotFoundError,
    PriceUnavailableError,
)
from ...logging_config import setup_logger
from ...models import (
    ExitReason,
    Position,
    PositionSide,
    TradeOutcome,
    TradeResult,
    ValidatedOrder,
)
from .ledger import PortfolioLedger

logger = setup_logger("position_manager")

CloseListener = Callable[[TradeResult], None]


def floating_pnl(position: Position, price: float) -> float:
    if position.side == PositionSide.LONG:
        return (price - position.entry_price) * position.amount
    return (position.entry_price - price) * position.amount


class PositionManager:
    """
    Lifecycle of simulated leveraged positions: NONE -> OPEN -> (TRAILING)* -> CLOSED.

    Trailing stop:
    - the high-water mark follows price in the position's favour
    - candidate stop = hwm * (1 - gap) for LONG, hwm * (1 + gap) for SHORT
    - the stop only ever tightens

    Exit checks on every tick, first match wins: take-profit, stop-loss,
    liquidation (floating loss >= threshold * initial margin).

    Every read-modify-write runs under one lock so the tick path and the
    scan path never interleave on the same position.
    """

    def __init__(
        self,
        ledger: PortfolioLedger,
        fee_rate: float = TRADING_FEE_RATE,
        trailing_gap: float = TRAILING_STOP_GAP,
        liquidation_threshold: float = LIQUIDATION_THRESHOLD,
        margin_fraction: float = DEFAULT_MARGIN_FRACTION,
        min_margin: float = MIN_MARGIN,
        max_margin: float = MAX_MARGIN,
    ):
        self.ledger = ledger
        self.fee_rate = fee_rate
        self.trailing_gap = trailing_gap
        self.liquidation_threshold = liquidation_threshold
        self.margin_fraction = margin_fraction
        self.min_margin = min_margin
        self.max_margin = max_margin
        self._lock = threading.RLock()
        self._close_listeners: List[CloseListener] = []

    def add_close_listener(self, listener: CloseListener) -> None:
        self._close_listeners.append(listener)

    # ------------------------------------------------------------------
    # Sizing
    # ------------------------------------------------------------------

    def compute_margin(self, balance: float, kelly: Optional[float] = None) -> float:
        optimal = balance * self.margin_fraction
        if kelly is not None and kelly > 0:
            # half-Kelly
            optimal = balance * (kelly / 2)
        margin = min(max(optimal, self.min_margin), self.max_margin)
        return min(margin, balance)

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    def open(self, order: ValidatedOrder) -> Position:
        with self._lock:
            if self.ledger.get_position(order.symbol) is not None:
                raise PositionExistsError(order.symbol)

            balance = self.ledger.balance
            if balance < self.min_margin:
                raise InsufficientBalanceError(balance, self.min_margin)

            price = order.execution_price
            if price <= 0:
                raise PriceUnavailableError(order.symbol)

            leverage = int(min(max(order.leverage, MIN_LEVERAGE), MAX_LEVERAGE))
            margin = self.compute_margin(balance, order.kelly_fraction)
            amount = margin * leverage / price

            position = Position(
                symbol=order.symbol,
                entry_price=price,
                amount=amount,
                leverage=leverage,
                initial_margin=margin,
                side=order.side,
                take_profit=order.take_profit,
                stop_loss=order.stop_loss,
                high_water_mark=price,
            )
            self.ledger.debit(margin)
            self.ledger.add_position(position)

        logger.info(
            f"🚀 OPEN {position.side.value} {position.symbol} x{leverage} @ {price} | "
            f"margin={margin:.2f} amount={amount:.6f} SL={position.stop_loss} TP={position.take_profit}"
        )
        return position.model_copy()

    # ------------------------------------------------------------------
    # Tick monitoring
    # ------------------------------------------------------------------

    def _trail(self, position: Position, price: float) -> bool:
        if position.side == PositionSide.LONG:
            if price <= position.high_water_mark:
                return False
            position.high_water_mark = price
            candidate = price * (1 - self.trailing_gap)
            if candidate > position.stop_loss:
                position.stop_loss = candidate
        else:
            if price >= position.high_water_mark:
                return False
            position.high_water_mark = price
            candidate = price * (1 + self.trailing_gap)
            if position.stop_loss <= 0 or candidate < position.stop_loss:
                position.stop_loss = candidate
        return True

    def _exit_reason(self, position: Position, price: float) -> Optional[ExitReason]:
        if position.side == PositionSide.LONG:
            if position.take_profit > 0 and price >= position.take_profit:
                return ExitReason.TAKE_PROFIT
            if price <= position.stop_loss:
                return ExitReason.STOP_LOSS
        else:
            if position.take_profit > 0 and price <= position.take_profit:
                return ExitReason.TAKE_PROFIT
            if position.stop_loss > 0 and price >= position.stop_loss:
                return ExitReason.STOP_LOSS

        if floating_pnl(position, price) <= -position.initial_margin * self.liquidation_threshold:
            return ExitReason.LIQUIDATION
        return None

    def on_tick(self, symbol: str, price: float) -> Optional[TradeResult]:
        """Trail, then check exits. Returns the TradeResult when the tick closed the position."""
        if price <= 0:
            return None
        with self._lock:
            position = self.ledger.get_position(symbol)
            if position is None:
                return None

            prior_stop = position.stop_loss
            if self._trail(position, price):
                self.ledger.replace_position(position)
                if position.stop_loss != prior_stop:
                    logger.debug(
                        f"🔁 TRAILING {symbol} | hwm={position.high_water_mark} "
                        f"sl {prior_stop:.6f} -> {position.stop_loss:.6f}"
                    )

            reason = self._exit_reason(position, price)
            if reason is None:
                return None
            return self.close(position, price, reason)

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    def close(self, position: Position, exit_price: float, reason: ExitReason) -> TradeResult:
        with self._lock:
            current = self.ledger.get_position(position.symbol)
            if current is None or current.id != position.id:
                raise PositionNotFoundError(position.symbol)

            entry_notional = position.amount * position.entry_price
            exit_notional = position.amount * exit_price
            fees = (entry_notional + exit_notional) * self.fee_rate
            net_pnl = floating_pnl(position, exit_price) - fees

            self.ledger.remove_position(position.symbol)
            self.ledger.credit(position.initial_margin + net_pnl)

            result = TradeResult(
                id=position.id,
                symbol=position.symbol,
                side=position.side,
                entry_price=position.entry_price,
                exit_price=exit_price,
                pnl=net_pnl,
                outcome=TradeOutcome.WIN if net_pnl >= 0 else TradeOutcome.LOSS,
                exit_reason=reason,
            )
            self.ledger.append_result(result)

        icon = "✅" if result.outcome == TradeOutcome.WIN else "🛑"
        logger.info(
            f"{icon} CLOSE {position.symbol} ({reason.value}) @ {exit_price} | "
            f"net={net_pnl:.4f} USDT fees={fees:.4f} balance={self.ledger.balance:.2f}"
        )
        for listener in self._close_listeners:
            try:
                listener(result)
            except Exception as e:
                logger.error(f"Close listener failed: {e}")
        return result

    def manual_close(self, symbol: str, price: Optional[float]) -> TradeResult:
        if not price or price <= 0:
            raise PriceUnavailableError(symbol)
        with self._lock:
            position = self.ledger.get_position(symbol)
            if position is None:
                raise PositionNotFoundError(symbol)
            return self.close(position, price, ExitReason.MANUAL)
