from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum

from ictbot.config import DisplacementConfig, FVGConfig
from ictbot.data.candles import Candle
from ictbot.strategy.contracts import GapType, Quality, apply_transition
from ictbot.strategy.displacement import score_displacement
from ictbot.strategy.indicators import body_ratio, imbalance


class FVGState(str, Enum):
    OPEN = "OPEN"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    CE_TOUCHED = "CE_TOUCHED"
    FILLED = "FILLED"
    VIOLATED = "VIOLATED"


class FVGEvent(str, Enum):
    WICK_INTO = "WICK_INTO"
    CE_REACHED = "CE_REACHED"
    FAR_SIDE_REACHED = "FAR_SIDE_REACHED"
    ADVERSE_CLOSE = "ADVERSE_CLOSE"


FVG_TRANSITIONS: dict[tuple[FVGState, FVGEvent], FVGState] = {
    (FVGState.OPEN, FVGEvent.WICK_INTO): FVGState.PARTIALLY_FILLED,
    (FVGState.OPEN, FVGEvent.ADVERSE_CLOSE): FVGState.VIOLATED,
    (FVGState.PARTIALLY_FILLED, FVGEvent.WICK_INTO): FVGState.PARTIALLY_FILLED,
    (FVGState.PARTIALLY_FILLED, FVGEvent.CE_REACHED): FVGState.CE_TOUCHED,
    (FVGState.PARTIALLY_FILLED, FVGEvent.ADVERSE_CLOSE): FVGState.VIOLATED,
    (FVGState.CE_TOUCHED, FVGEvent.WICK_INTO): FVGState.CE_TOUCHED,
    (FVGState.CE_TOUCHED, FVGEvent.CE_REACHED): FVGState.CE_TOUCHED,
    (FVGState.CE_TOUCHED, FVGEvent.FAR_SIDE_REACHED): FVGState.FILLED,
    (FVGState.CE_TOUCHED, FVGEvent.ADVERSE_CLOSE): FVGState.VIOLATED,
}

TERMINAL_FVG_STATES = frozenset({FVGState.FILLED, FVGState.VIOLATED})
ENTRY_FVG_STATES = frozenset({FVGState.OPEN, FVGState.PARTIALLY_FILLED})
_STATE_RANK = {state: rank for rank, state in enumerate(FVGState)}


def transition_fvg(state: FVGState, event: FVGEvent) -> FVGState:
    return apply_transition(FVG_TRANSITIONS, state, event, entity="FVG")


@dataclass(slots=True, frozen=True)
class FairValueGap:
    id: str
    timestamp: datetime
    timeframe: str
    type: GapType
    top: float
    bottom: float
    ce: float
    quality: Quality
    state: FVGState
    confirmed_at: datetime
    in_displacement: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_FVG_STATES

    @property
    def size(self) -> float:
        return self.top - self.bottom


def fvg_id(timestamp: datetime, timeframe: str, gap_type: str, bottom: float, top: float) -> str:
    return f"fvg_{int(timestamp.timestamp() * 1000)}_{timeframe}_{gap_type}_{bottom:.8g}_{top:.8g}"


def assess_quality(
    candles: list[Candle],
    impulse_index: int,
    config: FVGConfig,
    displacement_config: DisplacementConfig,
) -> tuple[Quality, bool]:
    strong_body = body_ratio(candles[impulse_index]) > config.quality_body_ratio
    displacement = score_displacement(
        candles,
        max(0, impulse_index - config.quality_window),
        impulse_index,
        displacement_config,
    )
    in_displacement = displacement.score >= displacement_config.min_score_for_sms
    if in_displacement and strong_body:
        return "HIGH", in_displacement
    if in_displacement or strong_body:
        return "MEDIUM", in_displacement
    return "LOW", in_displacement


def detect_fvgs(
    candles: list[Candle],
    timeframe: str | None = None,
    config: FVGConfig | None = None,
    displacement_config: DisplacementConfig | None = None,
) -> list[FairValueGap]:
    cfg = config or FVGConfig()
    disp_cfg = displacement_config or DisplacementConfig()
    output: list[FairValueGap] = []
    if len(candles) < 3:
        return output
    tf = timeframe or candles[0].timeframe
    for i in range(1, len(candles) - 1):
        gap = imbalance(candles[i - 1], candles[i + 1])
        if gap is None:
            continue
        gap_type, top, bottom = gap
        quality, in_displacement = assess_quality(candles, i, cfg, disp_cfg)
        output.append(
            FairValueGap(
                id=fvg_id(candles[i].timestamp, tf, gap_type, bottom, top),
                timestamp=candles[i].timestamp,
                timeframe=tf,
                type=gap_type,  # type: ignore[arg-type]
                top=top,
                bottom=bottom,
                ce=(top + bottom) / 2.0,
                quality=quality,
                state=FVGState.OPEN,
                confirmed_at=candles[i + 1].timestamp,
                in_displacement=in_displacement,
            )
        )
    return output


def _events_for(gap: FairValueGap, candle: Candle) -> list[FVGEvent]:
    if gap.type == "BULLISH":
        if candle.close < gap.bottom:
            return [FVGEvent.ADVERSE_CLOSE]
        reached = [candle.low < gap.top, candle.low <= gap.ce, candle.low <= gap.bottom]
    else:
        if candle.close > gap.top:
            return [FVGEvent.ADVERSE_CLOSE]
        reached = [candle.high > gap.bottom, candle.high >= gap.ce, candle.high >= gap.top]
    steps = (FVGEvent.WICK_INTO, FVGEvent.CE_REACHED, FVGEvent.FAR_SIDE_REACHED)
    return [event for event, hit in zip(steps, reached) if hit]


def step_fvg(gap: FairValueGap, candle: Candle) -> FVGState:
    state = gap.state
    for event in _events_for(gap, candle):
        if state in TERMINAL_FVG_STATES:
            break
        state = transition_fvg(state, event)
    return state


def update_fvg_states(fvgs: list[FairValueGap], candles: list[Candle]) -> list[FairValueGap]:
    updated: list[FairValueGap] = []
    for gap in fvgs:
        state = gap.state
        for candle in candles:
            if state in TERMINAL_FVG_STATES:
                break
            if candle.timestamp <= gap.confirmed_at:
                continue
            state = step_fvg(replace(gap, state=state), candle)
        updated.append(gap if state == gap.state else replace(gap, state=state))
    return updated


def find_entry_fvg(fvgs: list[FairValueGap], gap_type: GapType) -> FairValueGap | None:
    candidates = [
        gap
        for gap in fvgs
        if gap.type == gap_type and gap.state in ENTRY_FVG_STATES and gap.quality in ("HIGH", "MEDIUM")
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda gap: gap.timestamp)


def merge_fvgs(
    existing: list[FairValueGap],
    incoming: list[FairValueGap],
    now: datetime,
    max_age_hours: int = 24,
) -> list[FairValueGap]:
    """On an id collision the copy with the more advanced state wins; new ids are appended."""
    cutoff = now - timedelta(hours=max_age_hours)
    by_id: dict[str, FairValueGap] = {}
    for gap in existing + incoming:
        known = by_id.get(gap.id)
        if known is None or _STATE_RANK[gap.state] > _STATE_RANK[known.state]:
            by_id[gap.id] = gap
    kept = [gap for gap in by_id.values() if not gap.is_terminal and gap.timestamp >= cutoff]
    return sorted(kept, key=lambda gap: gap.timestamp)
