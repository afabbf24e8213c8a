from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ictbot.clock import timeframe_to_minutes
from ictbot.config import SignalConfig
from ictbot.data.candles import Candle
from ictbot.strategy.bias import DailyBias
from ictbot.strategy.contracts import Direction, direction_for_bias
from ictbot.strategy.fvg import FairValueGap, find_entry_fvg
from ictbot.strategy.liquidity import LiquidityLevel
from ictbot.strategy.premium_discount import in_ote, latest_range, premium_discount
from ictbot.strategy.sessions import Session
from ictbot.strategy.structure import StructureState
from ictbot.strategy.sweeps import Sweep
from ictbot.strategy.swings import SwingPoint

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TradingSignal:
    direction: Direction
    sweep: Sweep
    entry_fvg: FairValueGap
    entry_price: float
    stop_loss: float
    tp1: float
    tp2: float
    risk_reward: float
    displacement_score: int
    confidence: int
    timeframe: str
    created_at: datetime


@dataclass(slots=True)
class SignalContext:
    bias: DailyBias
    session: Session | None
    sweeps: list[Sweep]
    fvgs: list[FairValueGap]
    liquidity_levels: list[LiquidityLevel]
    structures: dict[str, StructureState]
    candles: dict[str, list[Candle]]
    swings: dict[str, list[SwingPoint]]
    current_price: float
    now: datetime


@dataclass(slots=True)
class SignalDecision:
    signal: TradingSignal | None
    reason_codes: list[str] = field(default_factory=list)
    direction: Direction | None = None

    @property
    def reason(self) -> str:
        return ",".join(self.reason_codes) if self.reason_codes else "OK"


def _reject(code: str, direction: Direction | None = None) -> SignalDecision:
    return SignalDecision(signal=None, reason_codes=[code], direction=direction)


def pick_sweep(sweeps: list[Sweep], direction: Direction, min_score: int) -> Sweep | None:
    wanted_low_side = direction == "LONG"
    candidates = [s for s in sweeps if s.score >= min_score and s.is_low_side == wanted_low_side]
    if not candidates:
        return None
    return max(candidates, key=lambda s: (s.timestamp, s.score))


def leg_range(direction: Direction, sweep: Sweep, candles: list[Candle]) -> tuple[float, float] | None:
    """(high, low) of the move out of the sweep extreme."""
    since = [
        c
        for c in candles
        if c.timestamp + timedelta(minutes=timeframe_to_minutes(c.timeframe)) > sweep.timestamp
    ]
    if not since:
        return None
    if direction == "LONG":
        high, low = max(c.high for c in since), sweep.extreme
    else:
        high, low = sweep.extreme, min(c.low for c in since)
    if high <= low:
        return None
    return high, low


def protective_stop(
    direction: Direction,
    structure: StructureState | None,
    gap: FairValueGap,
    entry: float,
    buffer_pct: float,
) -> float:
    if direction == "LONG":
        candidates: list[SwingPoint] = []
        if structure is not None:
            if structure.critical_swing is not None and structure.critical_swing.kind == "LOW":
                candidates.append(structure.critical_swing)
            candidates += [s for s in (structure.last_hl, structure.last_ll) if s is not None]
        below = [s for s in candidates if s.price < entry]
        if below:
            # Critical swing first, else the most recent low.
            chosen = below[0] if below[0] is structure.critical_swing else max(below, key=lambda s: s.timestamp)
            return chosen.price * (1 - buffer_pct)
        return gap.bottom * (1 - buffer_pct)

    candidates = []
    if structure is not None:
        if structure.critical_swing is not None and structure.critical_swing.kind == "HIGH":
            candidates.append(structure.critical_swing)
        candidates += [s for s in (structure.last_lh, structure.last_hh) if s is not None]
    above = [s for s in candidates if s.price > entry]
    if above:
        chosen = above[0] if above[0] is structure.critical_swing else max(above, key=lambda s: s.timestamp)
        return chosen.price * (1 + buffer_pct)
    return gap.top * (1 + buffer_pct)


def first_target(direction: Direction, fvgs: list[FairValueGap], entry: float, fallback_pct: float) -> float:
    if direction == "LONG":
        beyond = [g.ce for g in fvgs if g.type == "BEARISH" and not g.is_terminal and g.ce > entry]
        return min(beyond) if beyond else entry * (1 + fallback_pct)
    beyond = [g.ce for g in fvgs if g.type == "BULLISH" and not g.is_terminal and g.ce < entry]
    return max(beyond) if beyond else entry * (1 - fallback_pct)


def final_target(
    direction: Direction,
    levels: list[LiquidityLevel],
    entry: float,
    tp1: float,
    fallback_pct: float,
) -> float:
    if direction == "LONG":
        beyond = [lv.price for lv in levels if lv.is_active and lv.is_high_side and lv.price > tp1]
        target = min(beyond) if beyond else entry * (1 + fallback_pct)
        return target if target > tp1 else tp1 + (tp1 - entry)
    beyond = [lv.price for lv in levels if lv.is_active and not lv.is_high_side and lv.price < tp1]
    target = max(beyond) if beyond else entry * (1 - fallback_pct)
    return target if target < tp1 else tp1 - (entry - tp1)


def blocking_level(
    direction: Direction,
    levels: list[LiquidityLevel],
    entry: float,
    distance_pct: float,
    min_score: int,
) -> LiquidityLevel | None:
    for level in levels:
        if not level.is_active or level.score < min_score:
            continue
        if direction == "LONG" and level.is_high_side and entry < level.price <= entry * (1 + distance_pct):
            return level
        if direction == "SHORT" and not level.is_high_side and entry * (1 - distance_pct) <= level.price < entry:
            return level
    return None


def score_confidence(
    *,
    both_tf_agree: bool,
    sweep_score: int,
    displacement_score: int,
    gap: FairValueGap,
    in_ote_band: bool,
    in_zone: bool,
    risk_reward: float,
) -> int:
    score = 20 if both_tf_agree else 10
    score += min(20, sweep_score * 2)
    score += min(20, displacement_score * 2)
    score += {"HIGH": 15, "MEDIUM": 10}.get(gap.quality, 5)
    if in_ote_band:
        score += 15
    elif in_zone:
        score += 10
    if risk_reward >= 3:
        score += 10
    elif risk_reward >= 2:
        score += 5
    return max(0, min(100, score))


def detect_signal(
    ctx: SignalContext,
    config: SignalConfig | None = None,
    *,
    min_rr: float = 2.0,
    min_sweep_score: int = 5,
) -> SignalDecision:
    cfg = config or SignalConfig()

    direction = direction_for_bias(ctx.bias.bias)
    if direction is None:
        return _reject("BIAS_NO_TRADE")
    if ctx.session is None or not ctx.session.tradeable:
        return _reject("OUTSIDE_KILLZONE", direction)

    sweep = pick_sweep(ctx.sweeps, direction, min_sweep_score)
    if sweep is None:
        return _reject("NO_QUALIFYING_SWEEP", direction)

    sms_tf = next(
        (tf for tf in cfg.execution_timeframes if tf in ctx.structures and ctx.structures[tf].has_sms(direction)),
        None,
    )
    if sms_tf is None:
        return _reject("NO_SMS", direction)
    structure = ctx.structures[sms_tf]

    gap = find_entry_fvg(ctx.fvgs, "BULLISH" if direction == "LONG" else "BEARISH")
    if gap is None:
        return _reject("NO_ENTRY_FVG", direction)
    entry = gap.ce

    leg = leg_range(direction, sweep, ctx.candles.get(sms_tf, []))
    if leg is None:
        high, low = latest_range(ctx.swings.get(sms_tf, []))
        leg = (high, low) if high is not None and low is not None and high > low else None
    if leg is None:
        return _reject("NO_DEALING_RANGE", direction)
    zone = premium_discount(entry, leg[0], leg[1])
    if not zone.in_zone_for(direction):
        return _reject("WRONG_PD_ZONE", direction)

    obstacle = blocking_level(direction, ctx.liquidity_levels, entry, cfg.obstacle_distance_pct, cfg.obstacle_min_score)
    if obstacle is not None:
        LOGGER.info("Signal blocked by %s at %.2f (score=%d)", obstacle.type.value, obstacle.price, obstacle.score)
        return _reject("OPPOSING_LIQUIDITY", direction)

    stop = protective_stop(direction, structure, gap, entry, cfg.sl_buffer_pct)
    risk = abs(entry - stop)
    if risk <= 0:
        return _reject("INVALID_STOP", direction)
    tp1 = first_target(direction, ctx.fvgs, entry, cfg.tp1_fallback_pct)
    tp2 = final_target(direction, ctx.liquidity_levels, entry, tp1, cfg.tp2_fallback_pct)
    risk_reward = abs(tp2 - entry) / risk
    if risk_reward < min_rr:
        return _reject("RR_TOO_LOW", direction)

    confidence = score_confidence(
        both_tf_agree=ctx.bias.both_tf_agree,
        sweep_score=sweep.score,
        displacement_score=structure.displacement_score,
        gap=gap,
        in_ote_band=in_ote(entry, leg[0], leg[1], direction),
        in_zone=True,
        risk_reward=risk_reward,
    )
    if confidence < cfg.min_confidence:
        return _reject("CONFIDENCE_TOO_LOW", direction)

    signal = TradingSignal(
        direction=direction,
        sweep=sweep,
        entry_fvg=gap,
        entry_price=entry,
        stop_loss=stop,
        tp1=tp1,
        tp2=tp2,
        risk_reward=risk_reward,
        displacement_score=structure.displacement_score,
        confidence=confidence,
        timeframe=sms_tf,
        created_at=ctx.now,
    )
    LOGGER.info(
        "Signal %s on %s entry=%.2f sl=%.2f tp1=%.2f tp2=%.2f rr=%.2f confidence=%d",
        direction,
        sms_tf,
        entry,
        stop,
        tp1,
        tp2,
        risk_reward,
        confidence,
    )
    return SignalDecision(signal=signal, reason_codes=[], direction=direction)
