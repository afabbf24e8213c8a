from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from ictbot.config import DisplacementConfig
from ictbot.data.candles import Candle
from ictbot.strategy.contracts import Direction, Trend
from ictbot.strategy.displacement import score_recent_displacement
from ictbot.strategy.swings import SwingPoint, split_swings

StructureEvent = Literal[
    "BMS_BULLISH",
    "BMS_BEARISH",
    "CHOCH_BULLISH",
    "CHOCH_BEARISH",
    "SMS_BULLISH",
    "SMS_BEARISH",
    "NONE",
]


@dataclass(slots=True)
class StructureState:
    timeframe: str
    trend: Trend = "UNDEFINED"
    last_hh: SwingPoint | None = None
    last_hl: SwingPoint | None = None
    last_lh: SwingPoint | None = None
    last_ll: SwingPoint | None = None
    critical_swing: SwingPoint | None = None
    swing_count: int = 0
    last_event: StructureEvent = "NONE"
    displacement_score: int = 0

    def has_sms(self, direction: Direction) -> bool:
        return self.last_event == ("SMS_BULLISH" if direction == "LONG" else "SMS_BEARISH")

    def opposes(self, direction: Direction) -> bool:
        """True when the last event is a reversal against ``direction``."""
        if direction == "LONG":
            return self.last_event in ("SMS_BEARISH", "CHOCH_BEARISH")
        return self.last_event in ("SMS_BULLISH", "CHOCH_BULLISH")


def analyze_structure(swings: list[SwingPoint], timeframe: str) -> StructureState:
    highs, lows = split_swings(swings)
    state = StructureState(timeframe=timeframe, swing_count=len(swings))

    for prev, curr in zip(highs, highs[1:]):
        if curr.price > prev.price:
            state.last_hh = curr
        else:
            state.last_lh = curr
    for prev, curr in zip(lows, lows[1:]):
        if curr.price > prev.price:
            state.last_hl = curr
        else:
            state.last_ll = curr

    if len(highs) < 2 or len(lows) < 2:
        return state

    higher_high = highs[-1].price > highs[-2].price
    lower_high = highs[-1].price < highs[-2].price
    higher_low = lows[-1].price > lows[-2].price
    lower_low = lows[-1].price < lows[-2].price
    if higher_high and higher_low:
        state.trend = "BULLISH"
        state.critical_swing = state.last_hl
    elif lower_high and lower_low:
        state.trend = "BEARISH"
        state.critical_swing = state.last_lh
    else:
        state.trend = "TRANSITION"
    return state


def detect_bms(state: StructureState, candle: Candle) -> StructureEvent:
    # A close through the critical swing outranks a continuation break.
    if state.trend == "BULLISH":
        if state.critical_swing is not None and candle.close < state.critical_swing.price:
            return "CHOCH_BEARISH"
        if state.last_hh is not None and candle.close > state.last_hh.price:
            return "BMS_BULLISH"
    elif state.trend == "BEARISH":
        if state.critical_swing is not None and candle.close > state.critical_swing.price:
            return "CHOCH_BULLISH"
        if state.last_ll is not None and candle.close < state.last_ll.price:
            return "BMS_BEARISH"
    return "NONE"


def detect_sms(
    timeframe: str,
    candles: list[Candle],
    swings: list[SwingPoint],
    config: DisplacementConfig | None = None,
) -> StructureState:
    cfg = config or DisplacementConfig()
    state = analyze_structure(swings, timeframe)
    if len(candles) < 5:
        return state

    event = detect_bms(state, candles[-1])
    if event in ("CHOCH_BULLISH", "CHOCH_BEARISH"):
        displacement = score_recent_displacement(candles, cfg.sms_window, cfg)
        state.displacement_score = displacement.score
        if displacement.score >= cfg.min_score_for_sms:
            event = "SMS_BULLISH" if event == "CHOCH_BULLISH" else "SMS_BEARISH"
    state.last_event = event
    return state
