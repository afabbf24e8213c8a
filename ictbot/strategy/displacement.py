from __future__ import annotations

from dataclasses import dataclass

from ictbot.config import DisplacementConfig
from ictbot.data.candles import Candle
from ictbot.strategy.contracts import GapType
from ictbot.strategy.indicators import average_true_range, average_volume, body_ratio, imbalance


@dataclass(slots=True, frozen=True)
class DisplacementResult:
    score: int
    total_range: float
    atr: float
    atr_ratio: float
    volume_ratio: float
    body_ratio: float
    fvg_count: int
    direction: GapType

    def qualifies(self, min_score: int) -> bool:
        return self.score >= min_score


ZERO_DISPLACEMENT = DisplacementResult(
    score=0,
    total_range=0.0,
    atr=0.0,
    atr_ratio=0.0,
    volume_ratio=0.0,
    body_ratio=0.0,
    fvg_count=0,
    direction="BULLISH",
)


def _atr_points(ratio: float) -> int:
    if ratio >= 2.0:
        return 3
    if ratio >= 1.5:
        return 2
    if ratio >= 1.0:
        return 1
    return 0


def _volume_points(ratio: float) -> int:
    if ratio >= 3.0:
        return 2
    if ratio >= 2.0:
        return 1
    return 0


def _body_points(ratio: float) -> int:
    if ratio >= 0.7:
        return 2
    if ratio >= 0.5:
        return 1
    return 0


def _fvg_points(count: int) -> int:
    return min(3, max(0, count))


def count_gaps(candles: list[Candle], from_index: int, to_index: int) -> int:
    count = 0
    for i in range(max(from_index, 1), min(to_index, len(candles) - 2) + 1):
        if imbalance(candles[i - 1], candles[i + 1]) is not None:
            count += 1
    return count


def score_displacement(
    candles: list[Candle],
    from_index: int,
    to_index: int,
    config: DisplacementConfig | None = None,
) -> DisplacementResult:
    """
    Score the move over ``candles[from_index..to_index]`` (inclusive) on a 0-10 scale.

    ATR and the volume baseline use only candles before ``from_index``.
    """
    cfg = config or DisplacementConfig()
    if from_index < 0 or to_index >= len(candles) or from_index > to_index:
        return ZERO_DISPLACEMENT

    window = candles[from_index : to_index + 1]
    total_range = max(c.high for c in window) - min(c.low for c in window)

    atr_value = average_true_range(candles[:from_index], cfg.atr_period)
    atr_ratio = total_range / atr_value if atr_value > 0 else 0.0

    baseline = average_volume(candles[max(0, from_index - cfg.volume_lookback) : from_index])
    volume_ratio = average_volume(window) / baseline if baseline > 0 else 0.0

    avg_body_ratio = sum(body_ratio(c) for c in window) / len(window)
    fvg_count = count_gaps(candles, from_index, to_index)

    score = _atr_points(atr_ratio) + _volume_points(volume_ratio) + _body_points(avg_body_ratio) + _fvg_points(fvg_count)
    direction: GapType = "BULLISH" if window[-1].close >= window[0].close else "BEARISH"
    return DisplacementResult(
        score=min(10, score),
        total_range=total_range,
        atr=atr_value,
        atr_ratio=atr_ratio,
        volume_ratio=volume_ratio,
        body_ratio=avg_body_ratio,
        fvg_count=fvg_count,
        direction=direction,
    )


def score_recent_displacement(
    candles: list[Candle],
    window: int,
    config: DisplacementConfig | None = None,
) -> DisplacementResult:
    if not candles:
        return ZERO_DISPLACEMENT
    to_index = len(candles) - 1
    return score_displacement(candles, max(0, to_index - window), to_index, config)
