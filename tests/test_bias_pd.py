from __future__ import annotations

from datetime import datetime, time, timedelta, timezone

import pytest

from ictbot.strategy.bias import (
    BiasInputs,
    compute_daily_bias,
    determine_amd_phase,
    determine_framework,
    find_draw_on_liquidity,
    is_bias_aligned,
)
from ictbot.strategy.liquidity import LiquidityLevel, LiquidityType
from ictbot.strategy.premium_discount import in_ote, latest_range, ote_band, premium_discount
from ictbot.strategy.sessions import Session
from ictbot.strategy.swings import SwingPoint

NOW = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


def _swing(hours_ago: float, price: float, kind: str, tf: str = "H4") -> SwingPoint:
    return SwingPoint(index=0, timestamp=NOW - timedelta(hours=hours_ago), price=price, kind=kind, timeframe=tf)  # type: ignore[arg-type]


def _bullish(tf: str, newest_hours_ago: float = 48) -> list[SwingPoint]:
    return [
        _swing(newest_hours_ago + 72, 100, "HIGH", tf),
        _swing(newest_hours_ago + 48, 95, "LOW", tf),
        _swing(newest_hours_ago + 24, 110, "HIGH", tf),
        _swing(newest_hours_ago, 98, "LOW", tf),
    ]


def _bearish(tf: str) -> list[SwingPoint]:
    return [
        _swing(120, 110, "HIGH", tf),
        _swing(96, 98, "LOW", tf),
        _swing(72, 105, "HIGH", tf),
        _swing(48, 95, "LOW", tf),
    ]


def _level(price: float, level_type: LiquidityType, score: int) -> LiquidityLevel:
    return LiquidityLevel(
        id=f"{level_type.value}_{price}",
        price=price,
        type=level_type,
        score=score,
        created_at=NOW - timedelta(days=1),
        timeframe="H4",
    )


def _inputs(fast: list[SwingPoint], slow: list[SwingPoint], session: Session | None = None) -> BiasInputs:
    return BiasInputs(
        fast_swings=fast,
        slow_swings=slow,
        fast_candles=[],
        liquidity_levels=[_level(112, LiquidityType.BSL, 4), _level(90, LiquidityType.SSL, 4)],
        current_price=101.0,
        session=session,
    )


NY_MORNING = Session("NY_MORNING", time(8, 30), time(12, 0), tradeable=True)
NY_LUNCH = Session("NY_LUNCH", time(12, 0), time(13, 0), no_trade=True)


def test_premium_discount_zone_and_depth() -> None:
    at_eq = premium_discount(105, 110, 100)
    assert at_eq.zone == "PREMIUM"
    assert at_eq.equilibrium == 105
    assert at_eq.depth == 0.0

    deep = premium_discount(101, 100, 110)
    assert deep.zone == "DISCOUNT"
    assert deep.depth == pytest.approx(0.8)
    assert deep.in_zone_for("LONG")
    assert not deep.in_zone_for("SHORT")

    assert premium_discount(120, 110, 100).depth == 1.0


def test_ote_band_for_both_directions() -> None:
    low, high = ote_band(110, 100, "LONG")
    assert low == pytest.approx(102.1)
    assert high == pytest.approx(103.82)
    assert in_ote(103, 110, 100, "LONG")
    assert not in_ote(104.5, 110, 100, "LONG")

    low, high = ote_band(110, 100, "SHORT")
    assert low == pytest.approx(106.18)
    assert high == pytest.approx(107.9)


def test_latest_range_uses_most_recent_swings() -> None:
    assert latest_range(_bullish("H4")) == (110, 98)
    assert latest_range([]) == (None, None)


def test_agreeing_timeframes_give_directional_bias() -> None:
    bias = compute_daily_bias(_inputs(_bullish("H4"), _bullish("D1")), NOW)

    assert bias.bias == "BULLISH"
    assert bias.both_tf_agree is True
    assert bias.framework == "EXPANSION_EXPECTED"
    assert bias.draw_level == 112
    assert bias.draw_type == LiquidityType.BSL
    assert bias.zone == "DISCOUNT"
    assert bias.is_directional
    assert is_bias_aligned(bias, "LONG")
    assert not is_bias_aligned(bias, "SHORT")


def test_undefined_slow_timeframe_still_allows_bias() -> None:
    bias = compute_daily_bias(_inputs(_bullish("H4"), []), NOW)
    assert bias.bias == "BULLISH"
    assert bias.both_tf_agree is False


def test_conflict_and_no_trade_session_block() -> None:
    conflict = compute_daily_bias(_inputs(_bullish("H4"), _bearish("D1")), NOW)
    assert conflict.bias == "NO_TRADE"
    assert "TF_CONFLICT" in conflict.reason_codes

    unclear = compute_daily_bias(_inputs([], _bullish("D1")), NOW)
    assert unclear.bias == "NO_TRADE"
    assert "FAST_TF_UNCLEAR" in unclear.reason_codes

    lunch = compute_daily_bias(_inputs(_bullish("H4"), _bullish("D1"), NY_LUNCH), NOW)
    assert lunch.bias == "NO_TRADE"
    assert "NO_TRADE_SESSION" in lunch.reason_codes


def test_framework_follows_swing_age() -> None:
    assert determine_framework("BULLISH", _bullish("H4", newest_hours_ago=10), NOW, 40) == "RETRACEMENT_EXPECTED"
    assert determine_framework("BULLISH", _bullish("H4", newest_hours_ago=50), NOW, 40) == "EXPANSION_EXPECTED"
    assert determine_framework("TRANSITION", _bullish("H4"), NOW, 40) == "WAITING_FOR_SWEEP"


def test_draw_prefers_proximity_unless_much_stronger() -> None:
    near = _level(102, LiquidityType.BSL, 3)
    strong = _level(103.5, LiquidityType.PDH, 7)
    far = _level(120, LiquidityType.PWH, 11)

    assert find_draw_on_liquidity([near, far], "BULLISH", 101) == near
    assert find_draw_on_liquidity([near, strong, far], "BULLISH", 101) == strong
    assert find_draw_on_liquidity([near], "BEARISH", 101) is None
    assert find_draw_on_liquidity([near], "NO_TRADE", 101) is None


def test_amd_phase_by_session() -> None:
    asian = Session("ASIAN", time(20, 0), time(0, 0))
    london = Session("LONDON", time(2, 0), time(5, 0), tradeable=True)

    assert determine_amd_phase(asian, 100, 100, "BULLISH", 0.003) == "ACCUMULATION"
    assert determine_amd_phase(london, 99.5, 100, "BULLISH", 0.003) == "MANIPULATION"
    assert determine_amd_phase(london, 99.9, 100, "BULLISH", 0.003) == "ACCUMULATION"
    assert determine_amd_phase(london, 100.5, 100, "BEARISH", 0.003) == "MANIPULATION"
    assert determine_amd_phase(NY_MORNING, 100, 100, "BULLISH", 0.003) == "DISTRIBUTION"
    assert determine_amd_phase(None, 100, 100, "BULLISH", 0.003) == "ACCUMULATION"
