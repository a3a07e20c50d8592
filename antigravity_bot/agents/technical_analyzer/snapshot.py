import math
from typing import Dict, Optional

from ...config import (
    ATR_PERIOD,
    BB_MULTIPLIER,
    BB_PERIOD,
    KELLY_REWARD_RISK,
    MIN_CANDLES,
    RSI_PERIOD,
)
from ...models import IndicatorSnapshot, QuantMetrics
from .indicators import (
    CandleInput,
    atr,
    bollinger_bands,
    kalman_filter,
    kelly_fraction,
    regime_score,
    rsi,
    to_frame,
)

TREND_LOOKBACK = 5


def build_snapshot(candles: CandleInput, min_candles: int = MIN_CANDLES) -> Optional[IndicatorSnapshot]:
    """Indicators at the last bar, or None when the window is too short."""
    df = to_frame(candles)
    if len(df) < max(min_candles, BB_PERIOD, RSI_PERIOD + 1, ATR_PERIOD, TREND_LOOKBACK + 1):
        return None

    last = len(df) - 1
    price = float(df["close"].iloc[last])
    rsi_now = float(rsi(df, RSI_PERIOD).iloc[last])
    bands = bollinger_bands(df, BB_PERIOD, BB_MULTIPLIER).iloc[last]
    atr_now = float(atr(df, ATR_PERIOD).iloc[last])
    filtered = float(kalman_filter(df).iloc[last])
    regime = regime_score(df, min_length=min_candles)

    values = (rsi_now, bands["upper"], bands["middle"], bands["lower"], atr_now, filtered)
    if regime is None or any(math.isnan(v) for v in values):
        return None

    middle = float(bands["middle"])
    width_pct = (float(bands["upper"]) - float(bands["lower"])) / middle * 100 if middle else 0.0
    trend = "BULLISH" if price > float(df["close"].iloc[last - TREND_LOOKBACK]) else "BEARISH"

    return IndicatorSnapshot(
        price=price,
        rsi=rsi_now,
        bb_upper=float(bands["upper"]),
        bb_middle=middle,
        bb_lower=float(bands["lower"]),
        bb_width_pct=width_pct,
        atr=atr_now,
        filtered_price=filtered,
        regime_score=regime,
        kelly_fraction=kelly_fraction(regime, KELLY_REWARD_RISK),
        trend=trend,
    )


def build_snapshots(frames: Dict[str, CandleInput]) -> Optional[Dict[str, IndicatorSnapshot]]:
    """Snapshot every timeframe; None if any of them lacks enough history."""
    out: Dict[str, IndicatorSnapshot] = {}
    for interval, candles in frames.items():
        snap = build_snapshot(candles)
        if snap is None:
            return None
        out[interval] = snap
    return out


def quant_metrics(snapshot: IndicatorSnapshot) -> QuantMetrics:
    vol_index = snapshot.atr / snapshot.price * 100 if snapshot.price else 0.0
    return QuantMetrics(
        regime_score=snapshot.regime_score,
        filtered_price=snapshot.filtered_price,
        atr=snapshot.atr,
        volatility_index=vol_index,
        kelly_fraction=snapshot.kelly_fraction,
    )
