from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pandas as pd

from ictbot.clock import ensure_utc, timeframe_to_minutes


@dataclass(slots=True, frozen=True)
class Candle:
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    timeframe: str = "M5"

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open


def resolution_to_bybit(timeframe: str) -> str:
    mapping = {
        "M1": "1",
        "M5": "5",
        "M15": "15",
        "H1": "60",
        "H4": "240",
        "D1": "D",
    }
    if timeframe not in mapping:
        raise ValueError(f"Unsupported timeframe {timeframe}")
    return mapping[timeframe]


def parse_timestamp(value: str | int | float) -> datetime:
    if isinstance(value, (int, float)) or str(value).strip().isdigit():
        return datetime.fromtimestamp(int(value) / 1000.0, tz=timezone.utc)
    normalized = str(value).replace(" ", "T")
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(normalized))


def parse_klines(rows: list[list[Any]], timeframe: str) -> list[Candle]:
    """Bybit v5 kline rows are newest-first: [startTime, open, high, low, close, volume, turnover]."""
    output: list[Candle] = []
    for row in rows:
        if len(row) < 6:
            continue
        output.append(
            Candle(
                timestamp=parse_timestamp(row[0]),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5] or 0.0),
                timeframe=timeframe,
            )
        )
    return sorted(output, key=lambda c: c.timestamp)


def closed_only(candles: list[Candle], now_utc: datetime) -> list[Candle]:
    if not candles:
        return []
    interval = timedelta(minutes=timeframe_to_minutes(candles[-1].timeframe))
    now = ensure_utc(now_utc)
    return [c for c in candles if c.timestamp + interval <= now]


def merge_candles(existing: list[Candle], incoming: list[Candle], max_size: int) -> list[Candle]:
    by_ts: dict[datetime, Candle] = {c.timestamp: c for c in existing}
    for candle in incoming:
        by_ts[candle.timestamp] = candle
    merged = sorted(by_ts.values(), key=lambda c: c.timestamp)
    if max_size > 0 and len(merged) > max_size:
        merged = merged[-max_size:]
    return merged


def load_candles_csv(path: str | Path, timeframe: str) -> list[Candle]:
    frame = pd.read_csv(path)
    frame.columns = [str(col).strip().lower() for col in frame.columns]
    ts_col = "timestamp" if "timestamp" in frame.columns else "time"
    if ts_col not in frame.columns:
        raise ValueError(f"CSV {path} has no timestamp/time column")
    frame["timestamp"] = pd.to_datetime(frame[ts_col], utc=True, errors="coerce")
    for column in ("open", "high", "low", "close"):
        frame[column] = pd.to_numeric(frame[column], errors="coerce")
    if "volume" not in frame.columns:
        frame["volume"] = 0.0
    frame["volume"] = pd.to_numeric(frame["volume"], errors="coerce").fillna(0.0)
    frame = frame.dropna(subset=["timestamp", "open", "high", "low", "close"])
    frame = frame.sort_values("timestamp").drop_duplicates(subset="timestamp", keep="last")
    return [
        Candle(
            timestamp=row.timestamp.to_pydatetime(),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
            timeframe=timeframe,
        )
        for row in frame.itertuples(index=False)
    ]
