import math
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd
from ta.trend import SMAIndicator
from ta.volatility import BollingerBands

from ...config import KALMAN_Q, KALMAN_R, MIN_CANDLES
from ...models import Candle

CandleInput = Union[pd.DataFrame, Sequence[Candle]]

_COLUMNS = ["time", "open", "high", "low", "close", "volume"]


def to_frame(candles: CandleInput) -> pd.DataFrame:
    """Normalise a candle list (or an OHLCV frame) into a float DataFrame."""
    if isinstance(candles, pd.DataFrame):
        df = candles.reset_index(drop=True)
    else:
        df = pd.DataFrame([c.model_dump() for c in candles], columns=_COLUMNS)
    return df.astype({"open": float, "high": float, "low": float, "close": float})


def sma(candles: CandleInput, period: int) -> pd.Series:
    close = to_frame(candles)["close"]
    return SMAIndicator(close, window=period, fillna=False).sma_indicator()


def rsi(candles: CandleInput, period: int = 14) -> pd.Series:
    """Wilder RSI seeded with the plain average of the first `period` deltas.

    Indices up to and including `period` have no value.
    """
    close = to_frame(candles)["close"].to_numpy()
    n = len(close)
    out = np.full(n, np.nan)
    if n <= period:
        return pd.Series(out)

    deltas = np.diff(close)
    seed = deltas[:period]
    avg_gain = seed[seed > 0].sum() / period
    avg_loss = -seed[seed < 0].sum() / period

    for i in range(period + 1, n):
        change = close[i] - close[i - 1]
        gain = change if change > 0 else 0.0
        loss = -change if change < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period
        if avg_loss == 0:
            out[i] = 100.0
        else:
            out[i] = 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)

    return pd.Series(out)


def bollinger_bands(candles: CandleInput, period: int = 20, multiplier: float = 2.0) -> pd.DataFrame:
    close = to_frame(candles)["close"]
    bb = BollingerBands(close, window=period, window_dev=multiplier, fillna=False)
    return pd.DataFrame(
        {
            "upper": bb.bollinger_hband(),
            "middle": bb.bollinger_mavg(),
            "lower": bb.bollinger_lband(),
        }
    )


def true_range(candles: CandleInput) -> pd.Series:
    df = to_frame(candles)
    prev_close = df["close"].shift(1)
    ranges = pd.concat(
        [
            df["high"] - df["low"],
            (df["high"] - prev_close).abs(),
            (df["low"] - prev_close).abs(),
        ],
        axis=1,
    )
    tr = ranges.max(axis=1)
    if len(tr):
        tr.iloc[0] = df["high"].iloc[0] - df["low"].iloc[0]
    return tr


def atr(candles: CandleInput, period: int = 14) -> pd.Series:
    """Average true range; the first `period` bars carry the simple TR mean,
    later bars use Wilder smoothing."""
    tr = true_range(candles).to_numpy()
    n = len(tr)
    out = np.full(n, np.nan)
    if n < period:
        return pd.Series(out)

    seed = tr[:period].mean()
    out[:period] = seed
    for i in range(period, n):
        out[i] = (out[i - 1] * (period - 1) + tr[i]) / period
    return pd.Series(out)


class KalmanFilter:
    """Scalar random-walk Kalman filter used to denoise closes."""

    def __init__(self, r: float = KALMAN_R, q: float = KALMAN_Q):
        self.r = r  # measurement noise
        self.q = q  # process noise
        self.x: Optional[float] = None
        self.cov: Optional[float] = None

    def filter(self, measurement: float) -> float:
        if self.x is None:
            self.x = float(measurement)
            self.cov = 1.0
            return self.x

        pred_cov = self.cov + self.q
        gain = pred_cov / (pred_cov + self.r)
        self.x = self.x + gain * (measurement - self.x)
        self.cov = (1.0 - gain) * pred_cov
        return self.x


def kalman_filter(candles: CandleInput, r: float = KALMAN_R, q: float = KALMAN_Q) -> pd.Series:
    kf = KalmanFilter(r=r, q=q)
    close = to_frame(candles)["close"]
    return close.apply(kf.filter)


def regime_score(candles: CandleInput, min_length: int = MIN_CANDLES) -> Optional[float]:
    """Trend-strength heuristic in [0.4, 0.9].

    Maps the Kaufman efficiency ratio of the window onto a Hurst-like scale:
    above 0.5 reads as trending, below as mean-reverting. It is not a Hurst
    exponent estimate.
    """
    close = to_frame(candles)["close"]
    if len(close) < min_length:
        return None

    net_move = abs(close.iloc[-1] - close.iloc[0])
    total_path = close.diff().abs().sum()
    efficiency = net_move / total_path if total_path > 0 else 0.0
    return 0.4 + efficiency * 0.5


def kelly_fraction(win_probability: float, reward_risk: float) -> float:
    if reward_risk <= 0 or math.isnan(win_probability):
        return 0.0
    f = win_probability - (1.0 - win_probability) / reward_risk
    return max(0.0, f)
