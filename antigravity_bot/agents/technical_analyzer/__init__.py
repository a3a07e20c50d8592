from .indicators import (
    KalmanFilter,
    atr,
    bollinger_bands,
    kalman_filter,
    kelly_fraction,
    regime_score,
    rsi,
    sma,
)
from .snapshot import build_snapshot, build_snapshots, quant_metrics

__all__ = [
    "KalmanFilter",
    "atr",
    "bollinger_bands",
    "build_snapshot",
    "build_snapshots",
    "kalman_filter",
    "kelly_fraction",
    "quant_metrics",
    "regime_score",
    "rsi",
    "sma",
]
