from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from ictbot.clock import is_past_local_cutoff
from ictbot.config import ExitConfig
from ictbot.storage.models import Trade, TradeStatus
from ictbot.strategy.contracts import Direction
from ictbot.strategy.structure import StructureState

LOGGER = logging.getLogger(__name__)

ExitReason = Literal["KILL_SWITCH", "STOP_LOSS", "TP1", "TP2", "TIME_EXIT", "STRUCTURAL"]

_MANAGED = (TradeStatus.OPEN, TradeStatus.TP1_HIT)


@dataclass(slots=True, frozen=True)
class ExitDecision:
    should_exit: bool
    reason: ExitReason | None = None
    exit_fraction: float = 0.0
    exit_price: float | None = None
    new_stop_loss: float | None = None


NO_EXIT = ExitDecision(should_exit=False)


def breakeven_stop(direction: Direction, entry_price: float, buffer_pct: float) -> float:
    buffer = entry_price * buffer_pct
    return entry_price + buffer if direction == "LONG" else entry_price - buffer


def _reached(direction: Direction, price: float, target: float) -> bool:
    return price >= target if direction == "LONG" else price <= target


def _stopped(direction: Direction, price: float, stop: float) -> bool:
    return price <= stop if direction == "LONG" else price >= stop


def structural_exit(direction: Direction, structure: StructureState | None) -> bool:
    if structure is None or structure.trend == "UNDEFINED":
        return False
    return structure.opposes(direction)


def evaluate_exit(
    trade: Trade,
    price: float,
    now: datetime,
    structure: StructureState | None,
    kill_switch: bool,
    config: ExitConfig | None = None,
) -> ExitDecision:
    """First matching rule wins. Pending and closed trades never exit here."""
    cfg = config or ExitConfig()
    if trade.status not in _MANAGED:
        return NO_EXIT

    if kill_switch:
        LOGGER.warning("Kill switch exit for trade %s", trade.id)
        return ExitDecision(True, "KILL_SWITCH", 1.0, price)

    if _stopped(trade.direction, price, trade.stop_loss):
        return ExitDecision(True, "STOP_LOSS", 1.0, trade.stop_loss)

    if not trade.tp1_hit and _reached(trade.direction, price, trade.tp1):
        return ExitDecision(
            True,
            "TP1",
            cfg.tp1_close_fraction,
            trade.tp1,
            new_stop_loss=breakeven_stop(trade.direction, trade.entry_price, cfg.breakeven_buffer_pct),
        )

    if trade.tp1_hit and _reached(trade.direction, price, trade.tp2):
        return ExitDecision(True, "TP2", 1.0, trade.tp2)

    if is_past_local_cutoff(now, cfg.time_exit_local, cfg.timezone):
        return ExitDecision(True, "TIME_EXIT", 1.0, price)

    if structural_exit(trade.direction, structure):
        LOGGER.info("Structural exit: %s structure turned against %s trade %s", structure.timeframe, trade.direction, trade.id)
        return ExitDecision(True, "STRUCTURAL", 1.0, price)

    return NO_EXIT
