import math

import pytest

from antigravity_bot.agents.technical_analyzer.indicators import (
    KalmanFilter,
    atr,
    bollinger_bands,
    kalman_filter,
    kelly_fraction,
    regime_score,
    rsi,
    sma,
)
from antigravity_bot.agents.technical_analyzer.snapshot import (
    build_snapshot,
    build_snapshots,
    quant_metrics,
)
from conftest import make_candles, trending_closes


def test_short_windows_have_no_values():
    candles = make_candles([100.0 + i for i in range(10)])
    assert rsi(candles, 14).isna().all()
    assert atr(candles, 14).isna().all()
    assert bollinger_bands(candles, 20).isna().all().all()
    assert regime_score(candles, min_length=30) is None


def test_rsi_stays_in_range(candles_60):
    values = rsi(candles_60, 14)
    assert values.iloc[:15].isna().all()
    defined = values.dropna()
    assert len(defined) == 60 - 15
    assert ((defined >= 0) & (defined <= 100)).all()


def test_rsi_is_100_without_losses():
    candles = make_candles([100.0 + i for i in range(30)])
    assert rsi(candles, 14).iloc[-1] == 100.0


def test_bollinger_bands_are_ordered(candles_60):
    bands = bollinger_bands(candles_60, 20, 2).dropna()
    assert len(bands) == 60 - 19
    assert (bands["upper"] >= bands["middle"]).all()
    assert (bands["middle"] >= bands["lower"]).all()
    assert bands["middle"].iloc[-1] == pytest.approx(sma(candles_60, 20).iloc[-1])


def test_atr_constant_range():
    candles = make_candles([100.0] * 40, spread=1.0)
    values = atr(candles, 14)
    assert not values.isna().any()
    assert values.iloc[-1] == pytest.approx(1.0)


def test_atr_non_negative(candles_60):
    assert (atr(candles_60, 14).dropna() >= 0).all()


def test_kalman_constant_input_is_fixed_point():
    kf = KalmanFilter()
    for _ in range(20):
        assert kf.filter(42.0) == 42.0


def test_kalman_converges_to_new_level():
    kf = KalmanFilter()
    kf.filter(100.0)
    for _ in range(200):
        value = kf.filter(50.0)
    assert value == pytest.approx(50.0)


def test_kalman_series_starts_at_first_close(candles_60):
    series = kalman_filter(candles_60)
    assert len(series) == 60
    assert series.iloc[0] == candles_60[0].close


def test_regime_score_bounds():
    straight = make_candles([100.0 + i for i in range(40)])
    assert regime_score(straight) == pytest.approx(0.9)

    zigzag = make_candles([100.0 if i % 2 == 0 else 101.0 for i in range(41)])
    assert regime_score(zigzag) == pytest.approx(0.4)

    flat = make_candles([100.0] * 40)
    assert regime_score(flat) == pytest.approx(0.4)


def test_kelly_fraction():
    assert kelly_fraction(0.6, 1.5) == pytest.approx(0.6 - 0.4 / 1.5)
    assert kelly_fraction(0.3, 1.5) == 0.0
    assert kelly_fraction(0.9, 0) == 0.0
    for p in (0.0, 0.25, 0.5, 0.75, 1.0):
        assert kelly_fraction(p, 1.5) >= 0.0


def test_build_snapshot(candles_60):
    snap = build_snapshot(candles_60)
    assert snap is not None
    assert snap.price == candles_60[-1].close
    assert 0 <= snap.rsi <= 100
    assert snap.bb_upper >= snap.bb_middle >= snap.bb_lower
    assert 0.4 <= snap.regime_score <= 0.9
    assert snap.kelly_fraction >= 0
    assert snap.trend in ("BULLISH", "BEARISH")
    assert not math.isnan(snap.filtered_price)


def test_build_snapshot_needs_enough_history():
    assert build_snapshot(make_candles(trending_closes(29))) is None


def test_build_snapshots_fails_when_any_frame_is_short(candles_60):
    short = make_candles(trending_closes(10))
    assert build_snapshots({"1m": candles_60, "5m": short}) is None
    snaps = build_snapshots({"1m": candles_60, "5m": candles_60})
    assert set(snaps) == {"1m", "5m"}


def test_quant_metrics_volatility_index(candles_60):
    snap = build_snapshot(candles_60)
    metrics = quant_metrics(snap)
    assert metrics.volatility_index == pytest.approx(snap.atr / snap.price * 100)
    assert metrics.kelly_fraction == snap.kelly_fraction
