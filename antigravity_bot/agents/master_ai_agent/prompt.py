from typing import List, Optional

from ...config import PRIMARY_INTERVAL
from ...models import IndicatorSnapshot, Position, SignalRequest, TradeResult

SYSTEM_PROMPT = """\
ROLE: risk manager and multi-timeframe futures trader.
Goal: maximise return while protecting a small paper account.

CONTEXT:
- You receive indicators for three timeframes: 1m (micro), 5m (structure), 15m (macro).
- You choose the LEVERAGE between 1x and 20x.

MULTI-TIMEFRAME RULES:
1. Do NOT open a LONG when RSI(15m) > 70 (macro overbought) unless it is a very short scalp.
2. Do NOT open a SHORT when RSI(15m) < 30 (macro oversold).
3. The 5m/15m trend has priority. Use 1m only to time the entry.

EXECUTION RULE:
- Stop loss and take profit must sit at least 0.15% away from the current price
  to cover fees and spread.

TECHNIQUE:
- 1m, 5m and 15m aligned -> confidence > 90 (higher leverage).
- Price rising while 5m RSI falls -> possible reversal.
- Place the stop loss beyond the last 5m swing low/high.

Answer with pure JSON only:
{
  "action": "BUY" | "SELL" | "HOLD" | "WAIT",
  "confidence": <number 0-100>,
  "leverage": <integer 1-20>,
  "reasoning": "mention how 1m relates to 15m",
  "targets": {"stopLoss": <price>, "takeProfit": <price>}
}
"""


def _rsi_tag(rsi: float) -> str:
    if rsi > 70:
        return "(OVERBOUGHT!)"
    if rsi < 30:
        return "(OVERSOLD!)"
    return "(NEUTRAL)"


def _band_position(s: IndicatorSnapshot) -> str:
    if s.price > s.bb_upper:
        return "breaking above"
    if s.price < s.bb_lower:
        return "breaking below"
    return "inside the bands"


def _position_line(position: Optional[Position]) -> str:
    if position is None:
        return "NONE"
    return f"{position.side.value} x{position.leverage} @ {position.entry_price}"


def _history_lines(history: List[TradeResult]) -> str:
    if not history:
        return "- no closed trades yet"
    return "\n".join(
        f"- {t.symbol} {t.side.value} {t.outcome.value} pnl={t.pnl:.2f} ({t.exit_reason.value})"
        for t in history
    )


def build_user_prompt(req: SignalRequest) -> str:
    frames = req.snapshots
    micro = frames.get(PRIMARY_INTERVAL)
    lines = [
        f"ASSET: {req.symbol}",
        f"CAPITAL: {req.balance:.2f} USDT",
        f"CURRENT POSITION: {_position_line(req.position)}",
        "",
        "--- MULTI-TIMEFRAME ANALYSIS ---",
    ]

    for interval, snap in frames.items():
        lines += [
            "",
            f"[{interval}]",
            f"- Trend: {snap.trend}",
            f"- RSI: {snap.rsi:.2f} {_rsi_tag(snap.rsi)}",
            f"- Bollinger: {_band_position(snap)} (width {snap.bb_width_pct:.2f}%)",
            f"- ATR: {snap.atr:.6g} | Kalman price: {snap.filtered_price:.6g}",
            f"- Regime score: {snap.regime_score:.3f} ({'trending' if snap.regime_score > 0.5 else 'mean-reverting'})",
        ]

    if micro is not None:
        lines += ["", f"PRICE NOW: {micro.price}"]

    lines += [
        "",
        "RECENT TRADES:",
        _history_lines(req.history),
        "",
        "INSTRUCTION:",
        "Is the 1m entry aligned with 15m? If 15m is bearish, IGNORE 1m buy signals",
        "unless the bounce is extreme. Size stop loss and take profit with 5m volatility.",
    ]
    return "\n".join(lines)
