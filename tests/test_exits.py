from __future__ import annotations

from datetime import datetime, timezone

import pytest

from ictbot.storage.models import Trade, TradeStatus
from ictbot.strategy.exits import NO_EXIT, breakeven_stop, evaluate_exit
from ictbot.strategy.structure import StructureState

# 14:00 UTC is 10:00 in New York (EDT), well before the 15:30 cutoff.
MORNING = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)
AFTER_CUTOFF = datetime(2026, 3, 10, 19, 45, tzinfo=timezone.utc)


def _trade(direction: str = "LONG", status: TradeStatus = TradeStatus.OPEN, tp1_hit: bool = False) -> Trade:
    long = direction == "LONG"
    return Trade(
        id="paper-test",
        direction=direction,  # type: ignore[arg-type]
        entry_price=100.0,
        size_usdt=1000.0,
        leverage=3,
        stop_loss=98.0 if long else 102.0,
        initial_stop=98.0 if long else 102.0,
        tp1=101.0 if long else 99.0,
        tp2=105.0 if long else 95.0,
        created_at=MORNING,
        entry_zone_top=100.2,
        entry_zone_bottom=99.8,
        status=status,
        opened_at=MORNING,
        tp1_hit=tp1_hit,
        remaining_size=1000.0,
    )


def _structure(event: str) -> StructureState:
    return StructureState(timeframe="M15", trend="BEARISH", last_event=event)  # type: ignore[arg-type]


def test_kill_switch_has_top_priority() -> None:
    decision = evaluate_exit(_trade(), 97.0, AFTER_CUTOFF, _structure("SMS_BEARISH"), kill_switch=True)
    assert decision.should_exit
    assert decision.reason == "KILL_SWITCH"
    assert decision.exit_fraction == 1.0
    assert decision.exit_price == 97.0


def test_stop_loss_before_targets() -> None:
    decision = evaluate_exit(_trade(), 97.5, MORNING, None, kill_switch=False)
    assert decision.reason == "STOP_LOSS"
    assert decision.exit_price == 98.0


def test_tp1_closes_half_and_moves_stop_to_breakeven() -> None:
    long_decision = evaluate_exit(_trade(), 101.2, MORNING, None, kill_switch=False)
    assert long_decision.reason == "TP1"
    assert long_decision.exit_fraction == 0.5
    assert long_decision.exit_price == 101.0
    assert long_decision.new_stop_loss == pytest.approx(100.05)

    short_decision = evaluate_exit(_trade("SHORT"), 98.9, MORNING, None, kill_switch=False)
    assert short_decision.reason == "TP1"
    assert short_decision.new_stop_loss == pytest.approx(99.95)


def test_tp2_only_after_tp1() -> None:
    before = evaluate_exit(_trade(), 105.5, MORNING, None, kill_switch=False)
    assert before.reason == "TP1"

    after = evaluate_exit(_trade(status=TradeStatus.TP1_HIT, tp1_hit=True), 105.5, MORNING, None, kill_switch=False)
    assert after.reason == "TP2"
    assert after.exit_price == 105.0


def test_time_exit_then_structural() -> None:
    timed = evaluate_exit(_trade(), 100.5, AFTER_CUTOFF, _structure("SMS_BEARISH"), kill_switch=False)
    assert timed.reason == "TIME_EXIT"
    assert timed.exit_price == 100.5

    structural = evaluate_exit(_trade(), 100.5, MORNING, _structure("CHOCH_BEARISH"), kill_switch=False)
    assert structural.reason == "STRUCTURAL"

    aligned = evaluate_exit(_trade(), 100.5, MORNING, _structure("SMS_BULLISH"), kill_switch=False)
    assert aligned == NO_EXIT


def test_pending_and_closed_trades_are_skipped() -> None:
    assert evaluate_exit(_trade(status=TradeStatus.PENDING), 90.0, MORNING, None, kill_switch=True) == NO_EXIT
    assert evaluate_exit(_trade(status=TradeStatus.STOPPED), 90.0, MORNING, None, kill_switch=True) == NO_EXIT


def test_breakeven_stop_direction() -> None:
    assert breakeven_stop("LONG", 100.0, 0.0005) == pytest.approx(100.05)
    assert breakeven_stop("SHORT", 100.0, 0.0005) == pytest.approx(99.95)
