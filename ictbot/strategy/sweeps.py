from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from ictbot.config import SweepConfig
from ictbot.data.candles import Candle
from ictbot.strategy.indicators import body_ratio
from ictbot.strategy.liquidity import LiquidityLevel

Confirmation = Literal["IMMEDIATE", "DELAYED"]


@dataclass(slots=True, frozen=True)
class Sweep:
    id: str
    timestamp: datetime
    level: LiquidityLevel
    confirmation: Confirmation
    delay: int
    score: int
    extreme: float
    penetration_pct: float

    @property
    def is_low_side(self) -> bool:
        """A sweep of sell-side liquidity sets up longs."""
        return not self.level.is_high_side


def _depth_points(penetration_pct: float) -> int:
    if penetration_pct <= 0.001:
        return 3
    if penetration_pct <= 0.002:
        return 2
    if penetration_pct <= 0.005:
        return 1
    return 0


def _speed_points(delay: int) -> int:
    if delay == 0:
        return 3
    if delay == 1:
        return 2
    if delay <= 3:
        return 1
    return 0


def _body_points(ratio: float) -> int:
    if ratio >= 0.6:
        return 2
    if ratio >= 0.4:
        return 1
    return 0


def _level_points(level_score: int) -> int:
    if level_score >= 8:
        return 2
    if level_score >= 5:
        return 1
    return 0


def score_sweep(*, penetration_pct: float, delay: int, reversal: Candle, level_score: int) -> int:
    score = (
        _depth_points(penetration_pct)
        + _speed_points(delay)
        + _body_points(body_ratio(reversal))
        + _level_points(level_score)
    )
    return min(10, score)


def detect_sweep(level: LiquidityLevel, candles: list[Candle], config: SweepConfig | None = None) -> Sweep | None:
    cfg = config or SweepConfig()
    if not level.is_active or level.price <= 0:
        return None
    after = [c for c in candles if c.timestamp > level.created_at]
    high_side = level.is_high_side

    for i, candle in enumerate(after):
        exceeded = candle.high > level.price if high_side else candle.low < level.price
        if not exceeded:
            continue
        wick = candle.high if high_side else candle.low
        if abs(wick - level.price) / level.price > cfg.max_penetration_pct:
            return None

        reversal_index: int | None = None
        for offset in range(0, cfg.lookforward_candles + 1):
            if i + offset >= len(after):
                break
            close = after[i + offset].close
            if (close < level.price) if high_side else (close > level.price):
                reversal_index = i + offset
                break
        if reversal_index is None:
            return None

        window = after[i : reversal_index + 1]
        extreme = max(c.high for c in window) if high_side else min(c.low for c in window)
        penetration_pct = abs(extreme - level.price) / level.price
        if penetration_pct > cfg.max_penetration_pct:
            return None
        delay = reversal_index - i
        reversal = after[reversal_index]
        score = score_sweep(
            penetration_pct=penetration_pct,
            delay=delay,
            reversal=reversal,
            level_score=level.score,
        )
        if score <= 0:
            return None
        return Sweep(
            id=f"sweep_{level.id}_{int(candle.timestamp.timestamp() * 1000)}",
            timestamp=candle.timestamp,
            level=level,
            confirmation="IMMEDIATE" if delay == 0 else "DELAYED",
            delay=delay,
            score=score,
            extreme=extreme,
            penetration_pct=penetration_pct,
        )
    return None


def scan_for_sweeps(
    levels: list[LiquidityLevel],
    candles: list[Candle],
    config: SweepConfig | None = None,
) -> list[Sweep]:
    sweeps: list[Sweep] = []
    for level in levels:
        sweep = detect_sweep(level, candles, config)
        if sweep is not None:
            sweeps.append(sweep)
    return sorted(sweeps, key=lambda s: s.timestamp)


def qualifying_sweeps(sweeps: list[Sweep], min_score: int) -> list[Sweep]:
    return [sweep for sweep in sweeps if sweep.score >= min_score]


def remember_sweeps(recent: list[Sweep], new: list[Sweep], max_size: int) -> list[Sweep]:
    known = {sweep.id for sweep in recent}
    merged = recent + [sweep for sweep in new if sweep.id not in known]
    merged.sort(key=lambda s: s.timestamp)
    return merged[-max_size:] if max_size > 0 else merged
