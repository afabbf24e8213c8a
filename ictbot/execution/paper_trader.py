from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from ictbot.clock import is_past_local_cutoff
from ictbot.config import ExitConfig, PaperConfig
from ictbot.data.candles import Candle
from ictbot.storage.models import Trade, TradeEvent, TradeStatus
from ictbot.strategy.contracts import Direction
from ictbot.strategy.exits import ExitDecision, breakeven_stop
from ictbot.strategy.signal import TradingSignal

LOGGER = logging.getLogger(__name__)

PostingKind = Literal["TP1_PARTIAL", "CLOSE"]

_EXIT_EVENTS: dict[str, TradeEvent] = {
    "KILL_SWITCH": TradeEvent.KILL,
    "STOP_LOSS": TradeEvent.STOP,
    "TP2": TradeEvent.TP2,
    "TIME_EXIT": TradeEvent.TIME,
    "STRUCTURAL": TradeEvent.STRUCTURE,
}


@dataclass(slots=True, frozen=True)
class LedgerPosting:
    trade_id: str
    kind: PostingKind
    amount: float
    timestamp: datetime


def price_move_pct(direction: Direction, entry: float, exit_price: float) -> float:
    if entry <= 0:
        return 0.0
    move = (exit_price - entry) / entry
    return move if direction == "LONG" else -move


def apply_slippage(direction: Direction, price: float, slippage_pct: float) -> float:
    """Adverse slippage: longs fill higher, shorts fill lower."""
    return price * (1 + slippage_pct) if direction == "LONG" else price * (1 - slippage_pct)


class PaperTrader:
    """Simulated fills and exits for trades opened from signals."""

    def __init__(self, paper: PaperConfig | None = None, exit_config: ExitConfig | None = None):
        self.paper = paper or PaperConfig()
        self.exit = exit_config or ExitConfig()

    def open_trade(self, signal: TradingSignal, *, size_usdt: float, leverage: int, now: datetime) -> Trade:
        trade = Trade(
            id=f"paper-{uuid.uuid4().hex[:12]}",
            direction=signal.direction,
            entry_price=signal.entry_price,
            size_usdt=size_usdt,
            leverage=leverage,
            stop_loss=signal.stop_loss,
            initial_stop=signal.stop_loss,
            tp1=signal.tp1,
            tp2=signal.tp2,
            created_at=now,
            entry_zone_top=signal.entry_fvg.top,
            entry_zone_bottom=signal.entry_fvg.bottom,
            remaining_size=size_usdt,
            sweep_id=signal.sweep.id,
            fvg_id=signal.entry_fvg.id,
            displacement_score=signal.displacement_score,
            confidence=signal.confidence,
            timeframe=signal.timeframe,
        )
        LOGGER.info(
            "Paper trade %s PENDING %s entry=%.2f size=%.2f lev=%dx sl=%.2f tp1=%.2f tp2=%.2f",
            trade.id,
            trade.direction,
            trade.entry_price,
            trade.size_usdt,
            leverage,
            trade.stop_loss,
            trade.tp1,
            trade.tp2,
        )
        return trade

    def _try_fill(self, trade: Trade, candle: Candle, now: datetime) -> bool:
        if trade.direction == "LONG":
            if candle.low > trade.entry_zone_top:
                return False
            base = max(trade.entry_price, candle.low)
        else:
            if candle.high < trade.entry_zone_bottom:
                return False
            base = min(trade.entry_price, candle.high)
        trade.entry_price = apply_slippage(trade.direction, base, self.paper.slippage_pct)
        trade.opened_at = now
        trade.advance(TradeEvent.FILL)
        LOGGER.info("Paper trade %s filled at %.2f", trade.id, trade.entry_price)
        return True

    def cancel(self, trade: Trade, now: datetime, reason: str) -> None:
        trade.advance(TradeEvent.CANCEL)
        trade.closed_at = now
        trade.remaining_size = 0.0
        LOGGER.info("Paper trade %s cancelled before fill (%s)", trade.id, reason)

    def take_partial(self, trade: Trade, price: float, fraction: float, new_stop: float, now: datetime) -> LedgerPosting:
        closed = trade.size_usdt * fraction
        pnl = closed * price_move_pct(trade.direction, trade.entry_price, price)
        trade.remaining_size = trade.size_usdt - closed
        trade.pnl_usdt += pnl
        trade.tp1_hit = True
        trade.stop_loss = new_stop
        trade.advance(TradeEvent.TP1)
        LOGGER.info("Paper trade %s TP1 at %.2f pnl=%.2f stop->%.2f", trade.id, price, pnl, new_stop)
        return LedgerPosting(trade.id, "TP1_PARTIAL", pnl, now)

    def close(self, trade: Trade, price: float, event: TradeEvent, now: datetime) -> LedgerPosting:
        """Close the remainder; ``pnl_usdt`` ends as partial plus remainder."""
        remainder_pnl = trade.remaining_size * price_move_pct(trade.direction, trade.entry_price, price)
        trade.advance(event)
        trade.pnl_usdt += remainder_pnl
        trade.exit_price = price
        trade.closed_at = now
        trade.remaining_size = 0.0
        if trade.size_usdt > 0:
            trade.pnl_pct = trade.pnl_usdt / trade.size_usdt * 100.0
        risk_pct = abs(trade.entry_price - trade.initial_stop) / trade.entry_price if trade.entry_price > 0 else 0.0
        trade.rr_achieved = (trade.pnl_pct / 100.0) / risk_pct if risk_pct > 0 else 0.0
        LOGGER.info(
            "Paper trade %s closed %s at %.2f pnl=%.2f rr=%.2f",
            trade.id,
            trade.status.value,
            price,
            trade.pnl_usdt,
            trade.rr_achieved,
        )
        return LedgerPosting(trade.id, "CLOSE", remainder_pnl, now)

    def apply_exit(self, trade: Trade, decision: ExitDecision, now: datetime) -> list[LedgerPosting]:
        if not decision.should_exit or decision.reason is None or decision.exit_price is None:
            return []
        if decision.reason == "TP1":
            new_stop = decision.new_stop_loss
            if new_stop is None:
                new_stop = breakeven_stop(trade.direction, trade.entry_price, self.exit.breakeven_buffer_pct)
            return [self.take_partial(trade, decision.exit_price, decision.exit_fraction, new_stop, now)]
        return [self.close(trade, decision.exit_price, _EXIT_EVENTS[decision.reason], now)]

    def update(self, trade: Trade, candle: Candle, now: datetime) -> list[LedgerPosting]:
        """Advance ``trade`` against one closed candle and return the resulting postings."""
        if not trade.is_live:
            return []
        past_cutoff = is_past_local_cutoff(now, self.exit.time_exit_local, self.exit.timezone)

        if trade.status == TradeStatus.PENDING:
            if past_cutoff:
                self.cancel(trade, now, "time cutoff")
                return []
            stop_breached = candle.low <= trade.stop_loss if trade.direction == "LONG" else candle.high >= trade.stop_loss
            if stop_breached:
                self.cancel(trade, now, "stop breached before fill")
                return []
            if not self._try_fill(trade, candle, now):
                return []

        postings: list[LedgerPosting] = []
        if trade.direction == "LONG":
            stop_hit = candle.low <= trade.stop_loss
            tp1_hit = candle.high >= trade.tp1
            tp2_hit = candle.high >= trade.tp2
        else:
            stop_hit = candle.high >= trade.stop_loss
            tp1_hit = candle.low <= trade.tp1
            tp2_hit = candle.low <= trade.tp2

        # Stop first: the candle's path is unknown, so assume the worst.
        if stop_hit:
            postings.append(self.close(trade, trade.stop_loss, TradeEvent.STOP, now))
            return postings
        if not trade.tp1_hit and tp1_hit:
            stop = breakeven_stop(trade.direction, trade.entry_price, self.exit.breakeven_buffer_pct)
            postings.append(self.take_partial(trade, trade.tp1, self.exit.tp1_close_fraction, stop, now))
        if trade.tp1_hit and tp2_hit:
            postings.append(self.close(trade, trade.tp2, TradeEvent.TP2, now))
            return postings
        if past_cutoff:
            postings.append(self.close(trade, candle.close, TradeEvent.TIME, now))
        return postings
