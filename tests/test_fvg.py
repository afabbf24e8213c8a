from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from ictbot.data.candles import Candle
from ictbot.strategy.contracts import IllegalTransitionError
from ictbot.strategy.fvg import (
    FairValueGap,
    FVGEvent,
    FVGState,
    detect_fvgs,
    find_entry_fvg,
    fvg_id,
    merge_fvgs,
    transition_fvg,
    update_fvg_states,
)

START = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _candle(ts: datetime, o: float, h: float, l: float, c: float) -> Candle:
    return Candle(timestamp=ts, open=o, high=h, low=l, close=c)


def _at(minutes: int) -> datetime:
    return START + timedelta(minutes=minutes)


def _gap(minutes: int = 5, quality: str = "MEDIUM", state: FVGState = FVGState.OPEN) -> FairValueGap:
    return FairValueGap(
        id=fvg_id(_at(minutes), "M5", "BULLISH", 101.0, 101.4),
        timestamp=_at(minutes),
        timeframe="M5",
        type="BULLISH",
        top=101.4,
        bottom=101.0,
        ce=101.2,
        quality=quality,  # type: ignore[arg-type]
        state=state,
        confirmed_at=_at(minutes + 5),
    )


def test_bullish_fvg_detection() -> None:
    candles = [
        _candle(_at(0), 100, 101, 99, 100.5),
        _candle(_at(5), 101, 102, 100.2, 101.5),
        _candle(_at(10), 102, 103, 101.4, 102.7),
    ]
    gaps = detect_fvgs(candles, "M5")

    assert len(gaps) == 1
    gap = gaps[0]
    assert gap.type == "BULLISH"
    assert gap.bottom == 101
    assert gap.top == 101.4
    assert gap.ce == pytest.approx(101.2)
    assert gap.quality == "LOW"
    assert gap.state == FVGState.OPEN
    assert gap.timestamp == _at(5)
    assert gap.confirmed_at == _at(10)


def test_bearish_fvg_detection() -> None:
    candles = [
        _candle(_at(0), 100, 102, 99, 101),
        _candle(_at(5), 99.9, 100, 97, 97.2),
        _candle(_at(10), 96, 98, 95, 96.5),
    ]
    gaps = detect_fvgs(candles, "M5")

    assert len(gaps) == 1
    assert gaps[0].type == "BEARISH"
    assert gaps[0].top == 99
    assert gaps[0].bottom == 98
    assert gaps[0].ce == 98.5
    # Strong impulse body alone gives MEDIUM.
    assert gaps[0].quality == "MEDIUM"


def test_gap_boundaries_are_ordered() -> None:
    closes = [100, 102, 104, 106, 104, 102, 100]
    candles = [
        _candle(_at(5 * i), c - 0.5, c + 0.5, c - 0.5, c)
        for i, c in enumerate(closes)
    ]
    gaps = detect_fvgs(candles, "M5")
    assert gaps
    for gap in gaps:
        assert gap.top > gap.bottom
        assert gap.ce == (gap.top + gap.bottom) / 2


def test_redetection_yields_same_id() -> None:
    candles = [
        _candle(_at(0), 100, 101, 99, 100.5),
        _candle(_at(5), 101, 102, 100.2, 101.5),
        _candle(_at(10), 102, 103, 101.4, 102.7),
    ]
    assert detect_fvgs(candles, "M5")[0].id == detect_fvgs(candles, "M5")[0].id


def test_state_progresses_through_fill() -> None:
    gap = _gap()
    candles = [
        _candle(_at(10), 101.5, 101.9, 100.0, 101.8),
        _candle(_at(15), 101.8, 102.0, 101.3, 101.6),
    ]
    partially = update_fvg_states([gap], candles)[0]
    assert partially.state == FVGState.PARTIALLY_FILLED

    touched = update_fvg_states([partially], [_candle(_at(20), 101.6, 101.7, 101.15, 101.5)])[0]
    assert touched.state == FVGState.CE_TOUCHED

    filled = update_fvg_states([touched], [_candle(_at(25), 101.5, 101.6, 100.95, 101.3)])[0]
    assert filled.state == FVGState.FILLED
    assert filled.is_terminal


def test_one_candle_can_advance_several_steps() -> None:
    gap = update_fvg_states([_gap()], [_candle(_at(15), 101.5, 101.6, 100.9, 101.2)])[0]
    assert gap.state == FVGState.FILLED


def test_adverse_close_violates() -> None:
    gap = update_fvg_states([_gap()], [_candle(_at(15), 101.5, 101.6, 100.5, 100.9)])[0]
    assert gap.state == FVGState.VIOLATED

    terminal = update_fvg_states([gap], [_candle(_at(20), 101.5, 103, 101.5, 102.9)])[0]
    assert terminal.state == FVGState.VIOLATED


def test_terminal_states_reject_transitions() -> None:
    with pytest.raises(IllegalTransitionError):
        transition_fvg(FVGState.FILLED, FVGEvent.WICK_INTO)
    with pytest.raises(IllegalTransitionError):
        transition_fvg(FVGState.OPEN, FVGEvent.FAR_SIDE_REACHED)


def test_find_entry_fvg_prefers_most_recent_quality_gap() -> None:
    older = _gap(5, "HIGH")
    newer = _gap(30, "MEDIUM")
    low_quality = _gap(60, "LOW")
    touched = _gap(90, "HIGH", FVGState.CE_TOUCHED)

    chosen = find_entry_fvg([older, newer, low_quality, touched], "BULLISH")
    assert chosen == newer
    assert find_entry_fvg([older], "BEARISH") is None


def test_merge_keeps_tracked_state_and_drops_stale() -> None:
    now = _at(60 * 25)
    tracked = replace(_gap(60 * 2), state=FVGState.PARTIALLY_FILLED)
    redetected = _gap(60 * 2)
    stale = _gap(0)
    violated = _gap(60 * 3, state=FVGState.VIOLATED)

    merged = merge_fvgs([tracked, stale], [redetected, violated], now, max_age_hours=24)
    assert merged == [tracked]


def test_merge_prefers_the_more_advanced_copy() -> None:
    now = _at(60 * 4)
    lagging = _gap(60 * 2)
    touched = replace(_gap(60 * 2), state=FVGState.CE_TOUCHED)
    assert merge_fvgs([lagging], [touched], now) == [touched]
    assert merge_fvgs([touched], [lagging], now) == [touched]

    filled = replace(_gap(60 * 2), state=FVGState.FILLED)
    assert merge_fvgs([lagging], [filled], now) == []
