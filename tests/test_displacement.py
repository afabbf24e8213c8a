from __future__ import annotations

from datetime import datetime, timedelta, timezone

from ictbot.data.candles import Candle
from ictbot.strategy.displacement import ZERO_DISPLACEMENT, count_gaps, score_displacement
from ictbot.strategy.indicators import average_true_range, true_range

START = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _candle(i: int, o: float, h: float, l: float, c: float, v: float = 100.0) -> Candle:
    return Candle(timestamp=START + timedelta(minutes=5 * i), open=o, high=h, low=l, close=c, volume=v)


def _quiet(count: int) -> list[Candle]:
    return [_candle(i, 100.0, 100.5, 99.5, 100.0) for i in range(count)]


def test_true_range_uses_previous_close() -> None:
    candle = _candle(1, 101, 102, 100.5, 101.5)
    assert true_range(candle, None) == 1.5
    assert true_range(candle, 99.0) == 3.0


def test_average_true_range_over_trailing_window() -> None:
    assert average_true_range(_quiet(20), 14) == 1.0
    assert average_true_range(_quiet(1), 14) == 0.0


def test_invalid_range_returns_zero_result() -> None:
    candles = _quiet(10)
    assert score_displacement(candles, 5, 3) is ZERO_DISPLACEMENT
    assert score_displacement(candles, -1, 3) is ZERO_DISPLACEMENT
    assert score_displacement(candles, 2, 10) is ZERO_DISPLACEMENT


def test_impulse_scores_every_component() -> None:
    candles = _quiet(20)
    level = 100.0
    for i in range(20, 25):
        candles.append(_candle(i, level, level + 1.05, level - 0.05, level + 1.0, v=400.0))
        level += 1.2
    result = score_displacement(candles, 20, 24)

    assert result.atr == 1.0
    assert result.atr_ratio >= 2.0
    assert result.volume_ratio >= 3.0
    assert result.body_ratio >= 0.7
    assert result.fvg_count == 4
    assert result.direction == "BULLISH"
    assert result.score == 10
    assert result.qualifies(6)


def test_quiet_range_scores_low() -> None:
    candles = _quiet(30)
    result = score_displacement(candles, 20, 29)
    assert result.score == 1
    assert result.fvg_count == 0
    assert not result.qualifies(6)


def test_count_gaps_ignores_edges() -> None:
    candles = [
        _candle(0, 100, 101, 99, 100.8),
        _candle(1, 101, 103, 100.9, 102.9),
        _candle(2, 103, 104, 102, 103.8),
    ]
    assert count_gaps(candles, 0, 2) == 1
    assert count_gaps(candles, 2, 2) == 0
