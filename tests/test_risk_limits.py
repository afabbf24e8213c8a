from __future__ import annotations

from datetime import datetime, timezone

import pytest

from ictbot.config import RiskConfig
from ictbot.strategy.risk import RiskManager, RiskState

NOW = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


def _manager(**state: float) -> RiskManager:
    base = {"peak_equity": 10000.0, "current_equity": 10000.0}
    base.update(state)
    return RiskManager(RiskConfig(), RiskState(**base))  # type: ignore[arg-type]


def test_kill_switch_blocks_everything() -> None:
    manager = _manager(current_equity=8500.0)
    assert manager.is_kill_switch_active()

    result = manager.check(entry_price=100.0, stop_loss=99.0, risk_reward=5.0)
    assert result.allowed is False
    assert result.reason_codes == ["KILL_SWITCH_ACTIVE"]


def test_manual_kill_switch() -> None:
    manager = _manager()
    manager.set_manual_kill(True)
    assert manager.check(entry_price=100.0, stop_loss=99.0, risk_reward=3.0).reason == "KILL_SWITCH_ACTIVE"
    manager.set_manual_kill(False)
    assert manager.check(entry_price=100.0, stop_loss=99.0, risk_reward=3.0).allowed


def test_gate_order() -> None:
    weekly = _manager(weekly_pnl=-500.0, daily_pnl=-500.0, trades_today=3)
    assert weekly.check(entry_price=100.0, stop_loss=99.0, risk_reward=1.0).reason == "WEEKLY_DRAWDOWN_CAP"

    daily = _manager(current_equity=9800.0, daily_pnl=-200.0, trades_today=3)
    assert daily.check(entry_price=100.0, stop_loss=99.0, risk_reward=1.0).reason == "DAILY_LOSS_CAP"

    busy = _manager(trades_today=1)
    assert busy.check(entry_price=100.0, stop_loss=99.0, risk_reward=1.0).reason == "MAX_TRADES_REACHED"

    fresh = _manager()
    assert fresh.check(entry_price=100.0, stop_loss=99.0, risk_reward=1.5).reason == "RR_TOO_LOW"
    assert fresh.check(entry_price=100.0, stop_loss=100.0, risk_reward=3.0).reason == "ZERO_STOP_DISTANCE"


def test_risk_percent_follows_loss_streak() -> None:
    assert _manager().risk_percent() == 0.01
    assert _manager(consecutive_losses=1).risk_percent() == 0.005
    assert _manager(consecutive_losses=3).risk_percent() == 0.0025


def test_position_size_after_one_loss() -> None:
    manager = _manager(consecutive_losses=1)
    result = manager.check(entry_price=100.0, stop_loss=98.0, risk_reward=2.5, balance=10000.0)

    assert result.allowed
    assert result.risk_percent == 0.005
    assert result.leverage == 3
    # 10000 * 0.005 / 0.02 * 3
    assert result.position_size == pytest.approx(7500.0)


def test_position_size_capped_by_leverage() -> None:
    manager = _manager()
    size = manager.calculate_position_size(
        balance=10000.0,
        entry_price=100.0,
        stop_loss=99.9,
        risk_percent=0.01,
        leverage=3,
    )
    assert size == pytest.approx(30000.0)
    assert manager.calculate_position_size(balance=10000.0, entry_price=100.0, stop_loss=100.0, risk_percent=0.01, leverage=3) == 0.0


def test_record_trade_result_updates_state() -> None:
    manager = RiskManager(RiskConfig())
    manager.record_trade_result(-100.0, NOW)
    manager.record_trade_result(-50.0, NOW)
    state = manager.state

    assert state.consecutive_losses == 2
    assert state.trades_today == 2
    assert state.daily_pnl == -150.0
    assert state.weekly_pnl == -150.0
    assert state.current_equity == 9850.0
    assert state.peak_equity == 10000.0

    manager.record_trade_result(400.0, NOW)
    assert state.consecutive_losses == 0
    assert state.peak_equity == 10250.0

    manager.update_equity(10100.0, NOW)
    assert state.peak_equity == 10250.0
    assert state.current_equity == 10100.0


def test_resets_and_snapshot() -> None:
    manager = _manager(trades_today=1, daily_pnl=-20.0, weekly_pnl=-80.0)
    manager.reset_daily()
    assert manager.state.trades_today == 0
    assert manager.state.daily_pnl == 0.0
    assert manager.state.weekly_pnl == -80.0

    manager.reset_weekly()
    snapshot = manager.snapshot()
    assert snapshot["weekly_pnl"] == 0.0
    assert snapshot["kill_switch_active"] is False
    assert snapshot["risk_percent"] == 0.01
    assert snapshot["drawdown_pct"] == 0.0
