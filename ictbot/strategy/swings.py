from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from ictbot.data.candles import Candle

SwingKind = Literal["HIGH", "LOW"]


@dataclass(slots=True, frozen=True)
class SwingPoint:
    index: int
    timestamp: datetime
    price: float
    kind: SwingKind
    timeframe: str = "M5"
    method: str = "FRACTAL_N3"

    @property
    def key(self) -> tuple[datetime, str]:
        return self.timestamp, self.kind


def detect_swings(
    candles: list[Candle],
    lookback: int = 3,
    timeframe: str | None = None,
) -> tuple[list[SwingPoint], list[SwingPoint]]:
    highs: list[SwingPoint] = []
    lows: list[SwingPoint] = []
    if lookback < 1 or len(candles) < (2 * lookback + 1):
        return highs, lows

    tf = timeframe or candles[0].timeframe
    method = f"FRACTAL_N{lookback}"
    for index in range(lookback, len(candles) - lookback):
        center = candles[index]
        left = candles[index - lookback : index]
        right = candles[index + 1 : index + 1 + lookback]

        if all(center.high > c.high for c in left + right):
            highs.append(
                SwingPoint(
                    index=index,
                    timestamp=center.timestamp,
                    price=center.high,
                    kind="HIGH",
                    timeframe=tf,
                    method=method,
                )
            )
        if all(center.low < c.low for c in left + right):
            lows.append(
                SwingPoint(
                    index=index,
                    timestamp=center.timestamp,
                    price=center.low,
                    kind="LOW",
                    timeframe=tf,
                    method=method,
                )
            )
    return highs, lows


def detect_all_swings(candles: list[Candle], lookback: int = 3, timeframe: str | None = None) -> list[SwingPoint]:
    highs, lows = detect_swings(candles, lookback=lookback, timeframe=timeframe)
    return sorted(highs + lows, key=lambda s: (s.timestamp, s.kind))


def merge_new_swings(known: list[SwingPoint], detected: list[SwingPoint], max_size: int) -> tuple[list[SwingPoint], list[SwingPoint]]:
    """Add swings not yet known by (timestamp, kind). Returns (merged, newly added)."""
    seen = {swing.key for swing in known}
    added = [swing for swing in detected if swing.key not in seen]
    merged = sorted(known + added, key=lambda s: (s.timestamp, s.kind))
    if max_size > 0 and len(merged) > max_size:
        merged = merged[-max_size:]
    return merged, added


def split_swings(swings: list[SwingPoint]) -> tuple[list[SwingPoint], list[SwingPoint]]:
    ordered = sorted(swings, key=lambda s: s.timestamp)
    return [s for s in ordered if s.kind == "HIGH"], [s for s in ordered if s.kind == "LOW"]


def index_at_or_after(candles: list[Candle], timestamp: datetime) -> int | None:
    for i, candle in enumerate(candles):
        if candle.timestamp >= timestamp:
            return i
    return None
