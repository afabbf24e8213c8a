from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ictbot.strategy.contracts import Direction, apply_transition


class TradeStatus(str, Enum):
    PENDING = "PENDING"
    OPEN = "OPEN"
    TP1_HIT = "TP1_HIT"
    TP2_HIT = "TP2_HIT"
    STOPPED = "STOPPED"
    TIME_EXIT = "TIME_EXIT"
    MANUAL = "MANUAL"
    KILLED = "KILLED"
    STRUCTURAL = "STRUCTURAL"


class TradeEvent(str, Enum):
    FILL = "FILL"
    CANCEL = "CANCEL"
    TP1 = "TP1"
    TP2 = "TP2"
    STOP = "STOP"
    TIME = "TIME"
    MANUAL_CLOSE = "MANUAL_CLOSE"
    KILL = "KILL"
    STRUCTURE = "STRUCTURE"


_CLOSING_EVENTS = {
    TradeEvent.STOP: TradeStatus.STOPPED,
    TradeEvent.TIME: TradeStatus.TIME_EXIT,
    TradeEvent.MANUAL_CLOSE: TradeStatus.MANUAL,
    TradeEvent.KILL: TradeStatus.KILLED,
    TradeEvent.STRUCTURE: TradeStatus.STRUCTURAL,
}

TRADE_TRANSITIONS: dict[tuple[TradeStatus, TradeEvent], TradeStatus] = {
    (TradeStatus.PENDING, TradeEvent.FILL): TradeStatus.OPEN,
    (TradeStatus.PENDING, TradeEvent.CANCEL): TradeStatus.MANUAL,
    (TradeStatus.OPEN, TradeEvent.TP1): TradeStatus.TP1_HIT,
    (TradeStatus.TP1_HIT, TradeEvent.TP2): TradeStatus.TP2_HIT,
    **{(TradeStatus.OPEN, event): status for event, status in _CLOSING_EVENTS.items()},
    **{(TradeStatus.TP1_HIT, event): status for event, status in _CLOSING_EVENTS.items()},
}

LIVE_TRADE_STATUSES = frozenset({TradeStatus.PENDING, TradeStatus.OPEN, TradeStatus.TP1_HIT})


def transition_trade(status: TradeStatus, event: TradeEvent) -> TradeStatus:
    return apply_transition(TRADE_TRANSITIONS, status, event, entity="Trade")


@dataclass(slots=True)
class Trade:
    id: str
    direction: Direction
    entry_price: float
    size_usdt: float
    leverage: int
    stop_loss: float
    initial_stop: float
    tp1: float
    tp2: float
    created_at: datetime
    entry_zone_top: float
    entry_zone_bottom: float
    status: TradeStatus = TradeStatus.PENDING
    opened_at: datetime | None = None
    closed_at: datetime | None = None
    exit_price: float | None = None
    tp1_hit: bool = False
    remaining_size: float = 0.0
    pnl_usdt: float = 0.0
    pnl_pct: float = 0.0
    rr_achieved: float = 0.0
    sweep_id: str | None = None
    fvg_id: str | None = None
    displacement_score: int = 0
    confidence: int = 0
    timeframe: str = "M5"
    is_paper: bool = True

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_TRADE_STATUSES

    @property
    def is_filled(self) -> bool:
        return self.opened_at is not None

    def advance(self, event: TradeEvent) -> TradeStatus:
        self.status = transition_trade(self.status, event)
        return self.status


@dataclass(slots=True)
class SignalRecord:
    created_at: datetime
    direction: str | None
    bias: str
    session: str | None
    accepted: bool
    reason_codes: list[str]
    confidence: int | None = None
    risk_reward: float | None = None
    payload: dict[str, Any] = field(default_factory=dict)
