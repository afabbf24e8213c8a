from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime

from ictbot.config import RiskConfig

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RiskState:
    consecutive_losses: int = 0
    trades_today: int = 0
    daily_pnl: float = 0.0
    weekly_pnl: float = 0.0
    peak_equity: float = 0.0
    current_equity: float = 0.0
    manual_kill: bool = False
    updated_at: datetime | None = None

    @property
    def drawdown_pct(self) -> float:
        if self.peak_equity <= 0:
            return 0.0
        return (self.peak_equity - self.current_equity) / self.peak_equity


@dataclass(slots=True)
class RiskCheck:
    allowed: bool
    reason_codes: list[str]
    risk_percent: float = 0.0
    position_size: float = 0.0
    leverage: int = 0
    metadata: dict[str, float | int | str] = field(default_factory=dict)

    @property
    def reason(self) -> str:
        return ",".join(self.reason_codes) if self.reason_codes else "OK"


class RiskManager:
    """Circuit breakers and position sizing. Owns the mutable RiskState."""

    def __init__(self, risk: RiskConfig, state: RiskState | None = None):
        self.risk = risk
        self.state = state or RiskState(peak_equity=risk.initial_equity, current_equity=risk.initial_equity)

    def risk_percent(self) -> float:
        if self.state.consecutive_losses >= 2:
            return self.risk.post_two_loss_risk
        if self.state.consecutive_losses == 1:
            return self.risk.post_loss_risk
        return self.risk.max_risk_per_trade

    def is_kill_switch_active(self) -> bool:
        return self.state.manual_kill or self.state.drawdown_pct >= self.risk.kill_switch_drawdown

    def set_manual_kill(self, active: bool) -> None:
        self.state.manual_kill = active
        LOGGER.warning("Manual kill switch %s", "ENGAGED" if active else "released")

    def calculate_position_size(
        self,
        *,
        balance: float,
        entry_price: float,
        stop_loss: float,
        risk_percent: float,
        leverage: int,
    ) -> float:
        if entry_price <= 0:
            return 0.0
        stop_distance_pct = abs(entry_price - stop_loss) / entry_price
        if stop_distance_pct <= 0:
            return 0.0
        raw = balance * risk_percent / stop_distance_pct * leverage
        return min(raw, balance * leverage)

    def check(self, *, entry_price: float, stop_loss: float, risk_reward: float, balance: float | None = None) -> RiskCheck:
        state = self.state
        metadata: dict[str, float | int | str] = {
            "drawdown_pct": round(state.drawdown_pct, 6),
            "daily_pnl": round(state.daily_pnl, 4),
            "weekly_pnl": round(state.weekly_pnl, 4),
            "trades_today": state.trades_today,
        }
        if self.is_kill_switch_active():
            return RiskCheck(False, ["KILL_SWITCH_ACTIVE"], metadata=metadata)
        if state.peak_equity > 0 and state.weekly_pnl / state.peak_equity <= -self.risk.max_weekly_drawdown:
            return RiskCheck(False, ["WEEKLY_DRAWDOWN_CAP"], metadata=metadata)
        if state.current_equity > 0 and state.daily_pnl / state.current_equity <= -self.risk.max_daily_loss:
            return RiskCheck(False, ["DAILY_LOSS_CAP"], metadata=metadata)
        if state.trades_today >= self.risk.max_trades_per_day:
            return RiskCheck(False, ["MAX_TRADES_REACHED"], metadata=metadata)
        if risk_reward < self.risk.min_rr:
            return RiskCheck(False, ["RR_TOO_LOW"], metadata=metadata)

        risk_percent = self.risk_percent()
        leverage = min(self.risk.default_leverage, self.risk.max_leverage)
        size = self.calculate_position_size(
            balance=balance if balance is not None else state.current_equity,
            entry_price=entry_price,
            stop_loss=stop_loss,
            risk_percent=risk_percent,
            leverage=leverage,
        )
        if size <= 0:
            return RiskCheck(False, ["ZERO_STOP_DISTANCE"], metadata=metadata)
        return RiskCheck(
            allowed=True,
            reason_codes=[],
            risk_percent=risk_percent,
            position_size=size,
            leverage=leverage,
            metadata=metadata,
        )

    def record_trade_result(self, pnl: float, now: datetime | None = None) -> None:
        state = self.state
        state.trades_today += 1
        state.daily_pnl += pnl
        state.weekly_pnl += pnl
        state.current_equity += pnl
        if pnl < 0:
            state.consecutive_losses += 1
        else:
            state.consecutive_losses = 0
        state.peak_equity = max(state.peak_equity, state.current_equity)
        state.updated_at = now
        LOGGER.info(
            "Trade recorded pnl=%.2f equity=%.2f streak=%d daily=%.2f weekly=%.2f",
            pnl,
            state.current_equity,
            state.consecutive_losses,
            state.daily_pnl,
            state.weekly_pnl,
        )
        if self.is_kill_switch_active():
            LOGGER.error("Kill switch active: drawdown %.2f%%", state.drawdown_pct * 100)

    def update_equity(self, equity: float, now: datetime | None = None) -> None:
        self.state.current_equity = equity
        self.state.peak_equity = max(self.state.peak_equity, equity)
        self.state.updated_at = now

    def reset_daily(self) -> None:
        self.state.trades_today = 0
        self.state.daily_pnl = 0.0

    def reset_weekly(self) -> None:
        self.state.weekly_pnl = 0.0

    def snapshot(self) -> dict[str, object]:
        payload = asdict(self.state)
        payload["updated_at"] = self.state.updated_at.isoformat() if self.state.updated_at else None
        payload["drawdown_pct"] = round(self.state.drawdown_pct, 6)
        payload["kill_switch_active"] = self.is_kill_switch_active()
        payload["risk_percent"] = self.risk_percent()
        return payload
