from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum

from ictbot.config import LiquidityConfig
from ictbot.data.candles import Candle
from ictbot.strategy.contracts import apply_transition
from ictbot.strategy.swings import SwingPoint

MAX_LEVEL_SCORE = 11


class LiquidityType(str, Enum):
    BSL = "BSL"
    SSL = "SSL"
    EQH = "EQH"
    EQL = "EQL"
    PDH = "PDH"
    PDL = "PDL"
    PWH = "PWH"
    PWL = "PWL"
    SESSION_HIGH = "SESSION_HIGH"
    SESSION_LOW = "SESSION_LOW"


HIGH_SIDE_TYPES = frozenset(
    {LiquidityType.BSL, LiquidityType.EQH, LiquidityType.PDH, LiquidityType.PWH, LiquidityType.SESSION_HIGH}
)


class LiquidityState(str, Enum):
    ACTIVE = "ACTIVE"
    SWEPT = "SWEPT"
    EXPIRED = "EXPIRED"


class LiquidityEvent(str, Enum):
    TRADED_THROUGH = "TRADED_THROUGH"
    AGED_OUT = "AGED_OUT"


LIQUIDITY_TRANSITIONS: dict[tuple[LiquidityState, LiquidityEvent], LiquidityState] = {
    (LiquidityState.ACTIVE, LiquidityEvent.TRADED_THROUGH): LiquidityState.SWEPT,
    (LiquidityState.ACTIVE, LiquidityEvent.AGED_OUT): LiquidityState.EXPIRED,
}


def transition_liquidity(state: LiquidityState, event: LiquidityEvent) -> LiquidityState:
    return apply_transition(LIQUIDITY_TRANSITIONS, state, event, entity="LiquidityLevel")


@dataclass(slots=True, frozen=True)
class LiquidityLevel:
    id: str
    price: float
    type: LiquidityType
    score: int
    created_at: datetime
    timeframe: str
    state: LiquidityState = LiquidityState.ACTIVE
    swept_at: datetime | None = None
    swing_count: int = 1

    @property
    def is_high_side(self) -> bool:
        return self.type in HIGH_SIDE_TYPES

    @property
    def is_active(self) -> bool:
        return self.state == LiquidityState.ACTIVE


@dataclass(slots=True, frozen=True)
class SessionRange:
    name: str
    high: float
    low: float
    start: datetime


def score_level(
    *,
    swing_count: int,
    timeframe: str,
    created_at: datetime,
    now: datetime,
    config: LiquidityConfig,
    equal_cluster: bool = False,
    session: bool = False,
) -> int:
    score = min(3, max(0, swing_count))
    score += config.timeframe_bonus.get(timeframe, 0)
    if equal_cluster:
        score += 2
    if now - created_at > timedelta(days=config.clean_level_age_days):
        score += 1
    if session:
        score += 1
    return max(0, min(MAX_LEVEL_SCORE, score))


def _level_id(level_type: LiquidityType, timeframe: str, created_at: datetime, price: float) -> str:
    return f"{level_type.value}_{timeframe}_{int(created_at.timestamp() * 1000)}_{price:.8g}"


def _within(a: float, b: float, tolerance: float) -> bool:
    if b == 0:
        return a == 0
    return abs(a - b) / abs(b) <= tolerance


def _swing_levels(
    swings_by_tf: dict[str, list[SwingPoint]],
    now: datetime,
    config: LiquidityConfig,
) -> list[LiquidityLevel]:
    everything = [swing for swings in swings_by_tf.values() for swing in swings]
    levels: list[LiquidityLevel] = []
    for timeframe, swings in swings_by_tf.items():
        for swing in swings:
            touching = sum(
                1
                for other in everything
                if other.kind == swing.kind and _within(other.price, swing.price, config.eq_tolerance)
            )
            level_type = LiquidityType.BSL if swing.kind == "HIGH" else LiquidityType.SSL
            levels.append(
                LiquidityLevel(
                    id=_level_id(level_type, timeframe, swing.timestamp, swing.price),
                    price=swing.price,
                    type=level_type,
                    score=score_level(
                        swing_count=touching,
                        timeframe=timeframe,
                        created_at=swing.timestamp,
                        now=now,
                        config=config,
                    ),
                    created_at=swing.timestamp,
                    timeframe=timeframe,
                    swing_count=touching,
                )
            )
    return levels


def _cluster(swings: list[SwingPoint], tolerance: float) -> list[list[SwingPoint]]:
    clusters: list[list[SwingPoint]] = []
    for swing in sorted(swings, key=lambda s: s.price):
        if clusters and _within(swing.price, clusters[-1][0].price, tolerance):
            clusters[-1].append(swing)
        else:
            clusters.append([swing])
    return [cluster for cluster in clusters if len(cluster) >= 2]


def _equal_levels(
    swings_by_tf: dict[str, list[SwingPoint]],
    now: datetime,
    config: LiquidityConfig,
) -> list[LiquidityLevel]:
    levels: list[LiquidityLevel] = []
    for timeframe, swings in swings_by_tf.items():
        for kind, level_type in (("HIGH", LiquidityType.EQH), ("LOW", LiquidityType.EQL)):
            same_side = [s for s in swings if s.kind == kind]
            for cluster in _cluster(same_side, config.eq_tolerance):
                price = sum(s.price for s in cluster) / len(cluster)
                created_at = max(s.timestamp for s in cluster)
                levels.append(
                    LiquidityLevel(
                        id=_level_id(level_type, timeframe, created_at, price),
                        price=price,
                        type=level_type,
                        score=score_level(
                            swing_count=len(cluster),
                            timeframe=timeframe,
                            created_at=created_at,
                            now=now,
                            config=config,
                            equal_cluster=True,
                        ),
                        created_at=created_at,
                        timeframe=timeframe,
                        swing_count=len(cluster),
                    )
                )
    return levels


def _daily_levels(daily_candles: list[Candle], now: datetime, config: LiquidityConfig) -> list[LiquidityLevel]:
    completed = [c for c in daily_candles if c.timestamp + timedelta(days=1) <= now]
    if not completed:
        return []

    def _make(level_type: LiquidityType, price: float, created_at: datetime) -> LiquidityLevel:
        return LiquidityLevel(
            id=_level_id(level_type, "D1", created_at, price),
            price=price,
            type=level_type,
            score=score_level(swing_count=1, timeframe="D1", created_at=created_at, now=now, config=config),
            created_at=created_at,
            timeframe="D1",
        )

    prior = completed[-1]
    week = completed[-config.weekly_lookback_days :]
    week_high = max(week, key=lambda c: c.high)
    week_low = min(week, key=lambda c: c.low)
    return [
        _make(LiquidityType.PDH, prior.high, prior.timestamp),
        _make(LiquidityType.PDL, prior.low, prior.timestamp),
        _make(LiquidityType.PWH, week_high.high, week_high.timestamp),
        _make(LiquidityType.PWL, week_low.low, week_low.timestamp),
    ]


def _session_levels(
    session_ranges: list[SessionRange],
    now: datetime,
    config: LiquidityConfig,
) -> list[LiquidityLevel]:
    levels: list[LiquidityLevel] = []
    for session in session_ranges:
        for level_type, price in (
            (LiquidityType.SESSION_HIGH, session.high),
            (LiquidityType.SESSION_LOW, session.low),
        ):
            levels.append(
                LiquidityLevel(
                    id=_level_id(level_type, session.name, session.start, price),
                    price=price,
                    type=level_type,
                    score=score_level(
                        swing_count=1,
                        timeframe="H1",
                        created_at=session.start,
                        now=now,
                        config=config,
                        session=True,
                    ),
                    created_at=session.start,
                    timeframe="H1",
                )
            )
    return levels


def merge_levels(levels: list[LiquidityLevel], tolerance: float) -> list[LiquidityLevel]:
    """Drop levels within ``tolerance`` of a better-scored level on the same side."""
    kept: list[LiquidityLevel] = []
    for level in sorted(levels, key=lambda lv: (-lv.score, lv.created_at)):
        if any(
            other.is_high_side == level.is_high_side and _within(level.price, other.price, tolerance)
            for other in kept
        ):
            continue
        kept.append(level)
    return sorted(kept, key=lambda lv: lv.price)


def map_liquidity_levels(
    swings_by_tf: dict[str, list[SwingPoint]],
    daily_candles: list[Candle],
    now: datetime,
    config: LiquidityConfig | None = None,
    session_ranges: list[SessionRange] | None = None,
) -> list[LiquidityLevel]:
    cfg = config or LiquidityConfig()
    candidates = (
        _swing_levels(swings_by_tf, now, cfg)
        + _equal_levels(swings_by_tf, now, cfg)
        + _daily_levels(daily_candles, now, cfg)
        + _session_levels(session_ranges or [], now, cfg)
    )
    return merge_levels(candidates, cfg.merge_tolerance)


def _traded_through(level: LiquidityLevel, candle: Candle) -> bool:
    if level.is_high_side:
        return candle.high >= level.price
    return candle.low <= level.price


def update_liquidity_states(
    levels: list[LiquidityLevel],
    candles: list[Candle],
    now: datetime,
    config: LiquidityConfig | None = None,
) -> list[LiquidityLevel]:
    cfg = config or LiquidityConfig()
    expiry = timedelta(days=cfg.expiry_days)
    updated: list[LiquidityLevel] = []
    for level in levels:
        if not level.is_active:
            updated.append(level)
            continue
        hit = next(
            (c for c in candles if c.timestamp > level.created_at and _traded_through(level, c)),
            None,
        )
        if hit is not None:
            state = transition_liquidity(level.state, LiquidityEvent.TRADED_THROUGH)
            updated.append(replace(level, state=state, swept_at=hit.timestamp))
        elif now - level.created_at > expiry:
            updated.append(replace(level, state=transition_liquidity(level.state, LiquidityEvent.AGED_OUT)))
        else:
            updated.append(level)
    return updated


def active_levels(levels: list[LiquidityLevel]) -> list[LiquidityLevel]:
    return [level for level in levels if level.is_active]
