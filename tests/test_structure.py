from __future__ import annotations

from datetime import datetime, timedelta, timezone

from ictbot.data.candles import Candle
from ictbot.strategy.structure import StructureState, analyze_structure, detect_bms, detect_sms
from ictbot.strategy.swings import SwingPoint

START = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _candle(ts: datetime, o: float, h: float, l: float, c: float) -> Candle:
    return Candle(timestamp=ts, open=o, high=h, low=l, close=c, volume=100.0)


def _swing(minutes: int, price: float, kind: str) -> SwingPoint:
    return SwingPoint(index=minutes // 5, timestamp=START + timedelta(minutes=minutes), price=price, kind=kind)  # type: ignore[arg-type]


def test_bullish_trend_uses_last_higher_low_as_critical() -> None:
    swings = [_swing(0, 10, "HIGH"), _swing(5, 5, "LOW"), _swing(10, 12, "HIGH"), _swing(15, 6, "LOW")]
    state = analyze_structure(swings, "M5")

    assert state.trend == "BULLISH"
    assert state.critical_swing is not None
    assert state.critical_swing.price == 6
    assert state.last_hh is not None and state.last_hh.price == 12


def test_bearish_and_transition_and_undefined() -> None:
    bearish = [_swing(0, 12, "HIGH"), _swing(5, 6, "LOW"), _swing(10, 10, "HIGH"), _swing(15, 5, "LOW")]
    state = analyze_structure(bearish, "M5")
    assert state.trend == "BEARISH"
    assert state.critical_swing is not None and state.critical_swing.price == 10

    mixed = [_swing(0, 10, "HIGH"), _swing(5, 6, "LOW"), _swing(10, 12, "HIGH"), _swing(15, 5, "LOW")]
    assert analyze_structure(mixed, "M5").trend == "TRANSITION"

    sparse = [_swing(0, 10, "HIGH"), _swing(5, 6, "LOW"), _swing(15, 5, "LOW")]
    assert analyze_structure(sparse, "M5").trend == "UNDEFINED"


def test_choch_outranks_bms_when_both_hold() -> None:
    state = StructureState(
        timeframe="M5",
        trend="BULLISH",
        last_hh=_swing(10, 12, "HIGH"),
        critical_swing=_swing(15, 15, "LOW"),
    )
    candle = _candle(START + timedelta(minutes=20), 12.5, 13.2, 12.4, 13)
    assert detect_bms(state, candle) == "CHOCH_BEARISH"


def test_bms_continuation_and_none() -> None:
    swings = [_swing(0, 10, "HIGH"), _swing(5, 5, "LOW"), _swing(10, 12, "HIGH"), _swing(15, 6, "LOW")]
    state = analyze_structure(swings, "M5")
    assert detect_bms(state, _candle(START, 12, 12.6, 11.9, 12.5)) == "BMS_BULLISH"
    assert detect_bms(state, _candle(START, 8, 9, 7.5, 8.5)) == "NONE"


def _quiet_series(last_close: float) -> list[Candle]:
    candles = [
        _candle(START + timedelta(minutes=5 * i), 100.0, 100.5, 99.5, 100.0)
        for i in range(29)
    ]
    candles.append(_candle(START + timedelta(minutes=5 * 29), 100.0, 100.5, 99.5, last_close))
    return candles


def test_choch_without_displacement_stays_choch() -> None:
    swings = [_swing(0, 101.0, "HIGH"), _swing(5, 99.0, "LOW"), _swing(10, 100.2, "HIGH"), _swing(15, 98.0, "LOW")]
    state = detect_sms("M5", _quiet_series(100.3), swings)

    assert state.trend == "BEARISH"
    assert state.last_event == "CHOCH_BULLISH"
    assert state.displacement_score < 6
    assert not state.has_sms("LONG")
    assert state.opposes("SHORT")


def test_choch_with_displacement_becomes_sms() -> None:
    swings = [_swing(0, 101.0, "HIGH"), _swing(5, 99.0, "LOW"), _swing(10, 100.2, "HIGH"), _swing(15, 98.0, "LOW")]
    candles = _quiet_series(100.0)[:-6]
    level = 100.0
    for i in range(6):
        ts = START + timedelta(minutes=5 * (24 + i))
        # Strong bodies gapping over each other on heavy volume.
        candles.append(Candle(ts, level, level + 1.05, level - 0.05, level + 1.0, volume=400.0))
        level += 1.2
    state = detect_sms("M5", candles, swings)

    assert state.last_event == "SMS_BULLISH"
    assert state.displacement_score >= 6
    assert state.has_sms("LONG")


def test_detect_sms_needs_five_candles() -> None:
    swings = [_swing(0, 101.0, "HIGH"), _swing(5, 99.0, "LOW"), _swing(10, 100.2, "HIGH"), _swing(15, 98.0, "LOW")]
    state = detect_sms("M5", _quiet_series(100.3)[-4:], swings)
    assert state.trend == "BEARISH"
    assert state.last_event == "NONE"
