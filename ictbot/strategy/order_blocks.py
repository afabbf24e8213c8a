from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime

from ictbot.config import DisplacementConfig, OrderBlockConfig
from ictbot.data.candles import Candle
from ictbot.strategy.contracts import GapType
from ictbot.strategy.displacement import score_displacement

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class OrderBlock:
    id: str
    timestamp: datetime
    timeframe: str
    type: GapType
    top: float
    bottom: float
    ce: float
    is_valid: bool = True
    tested_at: datetime | None = None


def _block_from(candle: Candle, timeframe: str, block_type: GapType) -> OrderBlock:
    return OrderBlock(
        id=f"ob_{int(candle.timestamp.timestamp() * 1000)}_{timeframe}_{block_type}",
        timestamp=candle.timestamp,
        timeframe=timeframe,
        type=block_type,
        top=candle.high,
        bottom=candle.low,
        ce=(candle.high + candle.low) / 2.0,
    )


def detect_order_blocks(
    candles: list[Candle],
    timeframe: str,
    config: OrderBlockConfig | None = None,
    displacement: DisplacementConfig | None = None,
) -> list[OrderBlock]:
    """Last opposing candle right before a displacement window scoring at least ``min_score``."""
    cfg = config or OrderBlockConfig()
    if len(candles) < cfg.window:
        return []

    blocks: dict[datetime, OrderBlock] = {}
    for end in range(cfg.window - 1, len(candles)):
        start = max(0, end - cfg.window)
        result = score_displacement(candles, start, end, displacement)
        if result.score < cfg.min_score:
            continue
        for j in range(start - 1, max(0, start - cfg.lookback_candles) - 1, -1):
            candle = candles[j]
            if result.direction == "BULLISH" and candle.is_bearish:
                blocks.setdefault(candle.timestamp, _block_from(candle, timeframe, "BULLISH"))
                break
            if result.direction == "BEARISH" and candle.is_bullish:
                blocks.setdefault(candle.timestamp, _block_from(candle, timeframe, "BEARISH"))
                break

    found = sorted(blocks.values(), key=lambda ob: ob.timestamp)
    LOGGER.debug("detect_order_blocks [%s]: %d found", timeframe, len(found))
    return found


def update_order_blocks(blocks: list[OrderBlock], candles: list[Candle]) -> list[OrderBlock]:
    updated: list[OrderBlock] = []
    for block in blocks:
        current = block
        for candle in candles:
            if not current.is_valid:
                break
            if candle.timestamp <= block.timestamp:
                continue
            if block.type == "BULLISH":
                broken = candle.close < block.bottom
                tested = candle.low <= block.top
            else:
                broken = candle.close > block.top
                tested = candle.high >= block.bottom
            if broken:
                current = replace(current, is_valid=False)
            elif tested and current.tested_at is None:
                current = replace(current, tested_at=candle.timestamp)
        updated.append(current)
    return updated


def merge_order_blocks(existing: list[OrderBlock], incoming: list[OrderBlock], max_size: int) -> list[OrderBlock]:
    by_id = {ob.id: ob for ob in incoming}
    by_id.update({ob.id: ob for ob in existing})
    merged = sorted((ob for ob in by_id.values() if ob.is_valid), key=lambda ob: ob.timestamp)
    return merged[-max_size:] if max_size > 0 else merged
