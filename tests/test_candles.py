from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from ictbot.data.candles import (
    Candle,
    closed_only,
    load_candles_csv,
    merge_candles,
    parse_klines,
    parse_timestamp,
    resolution_to_bybit,
)

START = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


def _candle(minute: int, close: float, timeframe: str = "M5") -> Candle:
    return Candle(
        timestamp=START + timedelta(minutes=minute),
        open=close,
        high=close + 1,
        low=close - 1,
        close=close,
        timeframe=timeframe,
    )


def test_resolution_mapping() -> None:
    assert resolution_to_bybit("M15") == "15"
    assert resolution_to_bybit("H4") == "240"
    assert resolution_to_bybit("D1") == "D"
    with pytest.raises(ValueError):
        resolution_to_bybit("M3")


def test_parse_timestamp_accepts_millis_and_iso() -> None:
    assert parse_timestamp("1773151200000") == START
    assert parse_timestamp("2026-03-10T14:00:00Z") == START
    assert parse_timestamp("2026-03-10 14:00:00") == START


def test_parse_klines_sorts_and_skips_short_rows() -> None:
    rows = [
        ["1773151500000", "101", "102", "100", "101.5", "5", "500"],
        ["1773151200000", "100", "101", "99", "101", "", "0"],
        ["1773150900000", "100"],
    ]
    candles = parse_klines(rows, "M5")
    assert [c.timestamp for c in candles] == [START, START + timedelta(minutes=5)]
    assert candles[0].volume == 0.0
    assert candles[1].high == 102.0


def test_closed_only_drops_forming_candle() -> None:
    candles = [_candle(0, 100), _candle(5, 101), _candle(10, 102)]
    closed = closed_only(candles, START + timedelta(minutes=14, seconds=59))
    assert [c.close for c in closed] == [100, 101]
    assert closed_only([], START) == []


def test_merge_candles_replaces_by_timestamp_and_caps() -> None:
    existing = [_candle(0, 100), _candle(5, 101)]
    incoming = [_candle(5, 105), _candle(10, 102)]
    merged = merge_candles(existing, incoming, max_size=2)
    assert [c.close for c in merged] == [105, 102]


def test_load_candles_csv(tmp_path: Path) -> None:
    path = tmp_path / "btc.csv"
    path.write_text(
        "Time,Open,High,Low,Close\n"
        "2026-03-10T14:05:00Z,101,102,100,101.5\n"
        "2026-03-10T14:00:00Z,100,101,99,101\n"
        "bad,1,2,0,1\n",
        encoding="utf-8",
    )
    candles = load_candles_csv(path, "M5")
    assert [c.timestamp for c in candles] == [START, START + timedelta(minutes=5)]
    assert candles[0].volume == 0.0
    assert candles[1].timeframe == "M5"
    assert candles[0].timestamp.tzinfo is not None
