from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Literal

from ictbot.clock import trading_day
from ictbot.config import BiasConfig
from ictbot.data.candles import Candle
from ictbot.strategy.contracts import BiasDirection, Direction, Trend
from ictbot.strategy.liquidity import LiquidityLevel, LiquidityType
from ictbot.strategy.premium_discount import Zone, latest_range, premium_discount
from ictbot.strategy.sessions import Session
from ictbot.strategy.structure import analyze_structure
from ictbot.strategy.swings import SwingPoint

LOGGER = logging.getLogger(__name__)

Framework = Literal["RETRACEMENT_EXPECTED", "EXPANSION_EXPECTED", "WAITING_FOR_SWEEP"]
AmdPhase = Literal["ACCUMULATION", "MANIPULATION", "DISTRIBUTION"]


@dataclass(slots=True, frozen=True)
class DailyBias:
    date: date
    bias: BiasDirection
    framework: Framework
    draw_level: float | None
    draw_type: LiquidityType | None
    zone: Zone | None
    zone_depth: float
    amd_phase: AmdPhase
    both_tf_agree: bool
    fast_trend: Trend = "UNDEFINED"
    slow_trend: Trend = "UNDEFINED"
    reason_codes: tuple[str, ...] = ()

    @property
    def is_directional(self) -> bool:
        return self.bias in ("BULLISH", "BEARISH")


@dataclass(slots=True)
class BiasInputs:
    fast_swings: list[SwingPoint]
    slow_swings: list[SwingPoint]
    fast_candles: list[Candle]
    liquidity_levels: list[LiquidityLevel]
    current_price: float
    session: Session | None = None
    fast_timeframe: str = "H4"
    slow_timeframe: str = "D1"


def no_trade_bias(today: date, reason: str) -> DailyBias:
    return DailyBias(
        date=today,
        bias="NO_TRADE",
        framework="WAITING_FOR_SWEEP",
        draw_level=None,
        draw_type=None,
        zone=None,
        zone_depth=0.0,
        amd_phase="ACCUMULATION",
        both_tf_agree=False,
        reason_codes=(reason,),
    )


def determine_framework(fast_trend: Trend, fast_swings: list[SwingPoint], now: datetime, recent_hours: int) -> Framework:
    if fast_trend not in ("BULLISH", "BEARISH") or not fast_swings:
        return "WAITING_FOR_SWEEP"
    latest = max(fast_swings, key=lambda s: s.timestamp)
    if now - latest.timestamp < timedelta(hours=recent_hours):
        return "RETRACEMENT_EXPECTED"
    return "EXPANSION_EXPECTED"


def find_draw_on_liquidity(
    levels: list[LiquidityLevel],
    bias: BiasDirection,
    price: float,
    *,
    score_override: int = 3,
    distance_multiple: float = 3.0,
) -> LiquidityLevel | None:
    if bias == "BULLISH":
        candidates = [lv for lv in levels if lv.is_active and lv.is_high_side and lv.price > price]
    elif bias == "BEARISH":
        candidates = [lv for lv in levels if lv.is_active and not lv.is_high_side and lv.price < price]
    else:
        return None
    if not candidates:
        return None
    candidates.sort(key=lambda lv: abs(lv.price - price))
    best = candidates[0]
    for level in candidates[1:]:
        best_distance = abs(best.price - price)
        if level.score >= best.score + score_override and abs(level.price - price) < distance_multiple * best_distance:
            best = level
    return best


def daily_open(candles: list[Candle], now: datetime, timezone_name: str) -> float | None:
    today = trading_day(now, timezone_name)
    for candle in candles:
        if trading_day(candle.timestamp, timezone_name) == today:
            return candle.open
    return None


def determine_amd_phase(
    session: Session | None,
    price: float,
    day_open: float | None,
    bias: BiasDirection,
    judas_threshold_pct: float,
) -> AmdPhase:
    if session is None or session.name == "ASIAN":
        return "ACCUMULATION"
    if session.name in ("LONDON", "LONDON_TO_NY"):
        reference = day_open if day_open is not None else price
        threshold = reference * judas_threshold_pct
        if bias == "BULLISH" and price < reference - threshold:
            return "MANIPULATION"
        if bias == "BEARISH" and price > reference + threshold:
            return "MANIPULATION"
        return "ACCUMULATION"
    if session.name in ("NY_MORNING", "NY_AFTERNOON"):
        return "DISTRIBUTION"
    return "ACCUMULATION"


def compute_daily_bias(
    inputs: BiasInputs,
    now: datetime,
    config: BiasConfig | None = None,
    timezone_name: str = "America/New_York",
) -> DailyBias:
    cfg = config or BiasConfig()
    fast = analyze_structure(inputs.fast_swings, inputs.fast_timeframe)
    slow = analyze_structure(inputs.slow_swings, inputs.slow_timeframe)

    reasons: list[str] = []
    directional = fast.trend in ("BULLISH", "BEARISH")
    if not directional:
        reasons.append("FAST_TF_UNCLEAR")
    elif slow.trend not in (fast.trend, "UNDEFINED"):
        reasons.append("TF_CONFLICT")
    if inputs.session is not None and inputs.session.no_trade:
        reasons.append("NO_TRADE_SESSION")

    bias: BiasDirection = fast.trend if not reasons else "NO_TRADE"  # type: ignore[assignment]
    both_tf_agree = directional and slow.trend == fast.trend

    framework = determine_framework(fast.trend, inputs.fast_swings, now, cfg.framework_recent_hours)
    draw = find_draw_on_liquidity(
        inputs.liquidity_levels,
        bias,
        inputs.current_price,
        score_override=cfg.draw_score_override,
        distance_multiple=cfg.draw_distance_multiple,
    )

    zone: Zone | None = None
    depth = 0.0
    high, low = latest_range(inputs.fast_swings)
    if high is not None and low is not None:
        pd_state = premium_discount(inputs.current_price, high, low)
        zone = pd_state.zone
        depth = pd_state.depth

    amd = determine_amd_phase(
        inputs.session,
        inputs.current_price,
        daily_open(inputs.fast_candles, now, timezone_name),
        bias,
        cfg.judas_threshold_pct,
    )
    result = DailyBias(
        date=trading_day(now, timezone_name),
        bias=bias,
        framework=framework,
        draw_level=draw.price if draw is not None else None,
        draw_type=draw.type if draw is not None else None,
        zone=zone,
        zone_depth=depth,
        amd_phase=amd,
        both_tf_agree=both_tf_agree,
        fast_trend=fast.trend,
        slow_trend=slow.trend,
        reason_codes=tuple(reasons),
    )
    LOGGER.info(
        "Bias %s | %s=%s %s=%s | B1=%s | AMD=%s | zone=%s",
        result.bias,
        inputs.fast_timeframe,
        fast.trend,
        inputs.slow_timeframe,
        slow.trend,
        framework,
        amd,
        zone,
    )
    return result


def is_bias_aligned(bias: DailyBias, direction: Direction) -> bool:
    return (bias.bias == "BULLISH" and direction == "LONG") or (bias.bias == "BEARISH" and direction == "SHORT")
