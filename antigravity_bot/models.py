import math
import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .config import MAX_LEVERAGE, MIN_LEVERAGE


def now_ms() -> int:
    return int(time.time() * 1000)


class ServiceStatus(BaseModel):
    ok: bool
    error: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class SignalAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    WAIT = "WAIT"


class PositionSide(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class TradeOutcome(str, Enum):
    WIN = "WIN"
    LOSS = "LOSS"


class ExitReason(str, Enum):
    TAKE_PROFIT = "TAKE_PROFIT"
    STOP_LOSS = "STOP_LOSS"
    LIQUIDATION = "LIQUIDATION"
    MANUAL = "MANUAL"


class Candle(BaseModel):
    time: int  # bucket open, ms
    open: float
    high: float
    low: float
    close: float
    volume: float


class TickerData(BaseModel):
    symbol: str
    price: float
    change_percent: float = 0.0


class OrderBookEntry(BaseModel):
    price: float
    amount: float


class OrderBook(BaseModel):
    symbol: str
    bids: List[OrderBookEntry] = Field(default_factory=list)
    asks: List[OrderBookEntry] = Field(default_factory=list)


class IndicatorSnapshot(BaseModel):
    price: float
    rsi: float
    bb_upper: float
    bb_middle: float
    bb_lower: float
    bb_width_pct: float
    atr: float
    filtered_price: float
    regime_score: float   # 0.4..0.9, >0.5 trending
    kelly_fraction: float
    trend: str            # "BULLISH"/"BEARISH"


class QuantMetrics(BaseModel):
    regime_score: float
    filtered_price: float
    atr: float
    volatility_index: float
    kelly_fraction: float


class TradeDecision(BaseModel):
    """Decision returned by the signal generator, clamped into safe ranges."""

    action: SignalAction = SignalAction.WAIT
    confidence: float = 0.0
    leverage: int = MIN_LEVERAGE
    stop_loss: float = 0.0
    take_profit: float = 0.0
    reasoning: str = ""
    quant_metrics: Optional[QuantMetrics] = None
    timestamp: int = Field(default_factory=now_ms)

    @field_validator("action", mode="before")
    @classmethod
    def _coerce_action(cls, v: Any) -> SignalAction:
        if isinstance(v, SignalAction):
            return v
        try:
            return SignalAction(str(v).strip().upper())
        except ValueError:
            return SignalAction.WAIT

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> float:
        value = _as_finite(v)
        return min(max(value, 0.0), 100.0)

    @field_validator("leverage", mode="before")
    @classmethod
    def _clamp_leverage(cls, v: Any) -> int:
        value = _as_finite(v, default=float(MIN_LEVERAGE))
        return int(min(max(round(value), MIN_LEVERAGE), MAX_LEVERAGE))

    @field_validator("stop_loss", "take_profit", mode="before")
    @classmethod
    def _non_negative_target(cls, v: Any) -> float:
        value = _as_finite(v)
        return value if value > 0 else 0.0

    @field_validator("reasoning", mode="before")
    @classmethod
    def _trim_reasoning(cls, v: Any) -> str:
        return str(v or "").strip()[:500]

    @property
    def is_actionable(self) -> bool:
        return self.action in (SignalAction.BUY, SignalAction.SELL)


def _as_finite(v: Any, default: float = 0.0) -> float:
    try:
        value = float(v)
    except (TypeError, ValueError):
        return default
    if math.isnan(value) or math.isinf(value):
        return default
    return value


class Position(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:9])
    symbol: str
    entry_price: float
    amount: float           # leveraged size in coin units
    leverage: int
    initial_margin: float   # USDT taken from the balance
    side: PositionSide
    take_profit: float
    stop_loss: float
    high_water_mark: float
    opened_at: int = Field(default_factory=now_ms)


class TradeResult(BaseModel):
    id: str
    symbol: str
    side: PositionSide
    entry_price: float
    exit_price: float
    pnl: float
    outcome: TradeOutcome
    exit_reason: ExitReason
    closed_at: int = Field(default_factory=now_ms)


class SignalRequest(BaseModel):
    symbol: str
    snapshots: Dict[str, IndicatorSnapshot]
    balance: float
    position: Optional[Position] = None
    history: List[TradeResult] = Field(default_factory=list)


class AIDecisionRecord(BaseModel):
    ts: int
    symbol: str
    decision: TradeDecision


class ValidatedOrder(BaseModel):
    """A gate-approved entry, ready for sizing."""

    symbol: str
    action: SignalAction
    leverage: int
    stop_loss: float
    take_profit: float
    execution_price: float
    kelly_fraction: Optional[float] = None

    @property
    def side(self) -> PositionSide:
        return PositionSide.LONG if self.action == SignalAction.BUY else PositionSide.SHORT
