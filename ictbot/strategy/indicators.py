from __future__ import annotations

from ictbot.data.candles import Candle


def true_range(candle: Candle, prev_close: float | None) -> float:
    if prev_close is None:
        return candle.high - candle.low
    return max(
        candle.high - candle.low,
        abs(candle.high - prev_close),
        abs(candle.low - prev_close),
    )


def average_true_range(candles: list[Candle], period: int) -> float:
    """Mean true range of the last ``period`` candles that have a previous close."""
    if period <= 0:
        raise ValueError("period must be > 0")
    if len(candles) < 2:
        return 0.0
    count = min(len(candles) - 1, period)
    start = len(candles) - count
    total = sum(true_range(candles[i], candles[i - 1].close) for i in range(start, len(candles)))
    return total / count


def real_body(candle: Candle) -> float:
    return abs(candle.close - candle.open)


def body_ratio(candle: Candle) -> float:
    spread = candle.high - candle.low
    if spread <= 0:
        return 0.0
    return real_body(candle) / spread


def average_volume(candles: list[Candle]) -> float:
    if not candles:
        return 0.0
    return sum(c.volume for c in candles) / len(candles)


def imbalance(prev: Candle, nxt: Candle) -> tuple[str, float, float] | None:
    """Three-candle gap between ``prev`` and ``nxt``: (type, top, bottom)."""
    if nxt.low > prev.high:
        return "BULLISH", nxt.low, prev.high
    if nxt.high < prev.low:
        return "BEARISH", prev.low, nxt.high
    return None
