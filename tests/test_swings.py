from __future__ import annotations

from datetime import datetime, timedelta, timezone

from ictbot.data.candles import Candle
from ictbot.strategy.swings import detect_all_swings, detect_swings, merge_new_swings


def _candle(ts: datetime, o: float, h: float, l: float, c: float) -> Candle:
    return Candle(timestamp=ts, open=o, high=h, low=l, close=c)


def _series(highs: list[float], lows: list[float]) -> list[Candle]:
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    return [
        _candle(start + timedelta(minutes=5 * i), (h + l) / 2, h, l, (h + l) / 2)
        for i, (h, l) in enumerate(zip(highs, lows))
    ]


def test_spike_is_unique_swing_high() -> None:
    candles = _series([100, 100, 100, 105, 100, 100, 100], [99, 99, 99, 99, 99, 99, 99])
    highs, lows = detect_swings(candles, lookback=3)

    assert len(highs) == 1
    assert highs[0].index == 3
    assert highs[0].price == 105
    assert highs[0].kind == "HIGH"
    assert highs[0].method == "FRACTAL_N3"
    # Flat lows never confirm: the comparison is strict.
    assert lows == []


def test_needs_two_n_plus_one_candles() -> None:
    candles = _series([100, 100, 105, 100, 100, 100], [99, 99, 99, 99, 99, 99])
    assert detect_swings(candles, lookback=3) == ([], [])


def test_last_n_candles_are_never_confirmed() -> None:
    candles = _series([100, 101, 102, 103, 104, 105, 110, 104, 103], [99] * 9)
    highs, _ = detect_swings(candles, lookback=3)
    assert highs == []


def test_swing_low_detection_is_symmetric() -> None:
    candles = _series([101] * 7, [99, 98.5, 98, 96, 98, 98.5, 99])
    highs, lows = detect_swings(candles, lookback=3)
    assert highs == []
    assert [s.price for s in lows] == [96]


def test_detection_is_deterministic() -> None:
    candles = _series([100, 102, 101, 106, 101, 103, 100, 99, 104, 98], [98, 97, 99, 96, 97, 95, 97, 98, 96, 97])
    assert detect_all_swings(candles, 2) == detect_all_swings(candles, 2)


def test_merge_new_swings_dedupes_by_timestamp_and_kind() -> None:
    candles = _series([100, 100, 100, 105, 100, 100, 100, 100, 100, 100], [99, 99, 99, 99, 99, 99, 97, 99, 99, 99])
    first = detect_all_swings(candles[:7], 3, "M5")
    merged, added = merge_new_swings([], first, max_size=200)
    assert len(added) == 1

    again = detect_all_swings(candles, 3, "M5")
    merged, added = merge_new_swings(merged, again, max_size=200)
    assert [s.kind for s in added] == ["LOW"]
    assert len(merged) == 2


def test_merge_new_swings_keeps_most_recent() -> None:
    candles = _series([100, 100, 100, 105, 100, 100, 100, 100, 100, 100], [99, 99, 99, 99, 99, 99, 97, 99, 99, 99])
    swings = detect_all_swings(candles, 3, "M5")
    merged, _ = merge_new_swings([], swings, max_size=1)
    assert len(merged) == 1
    assert merged[0].kind == "LOW"
