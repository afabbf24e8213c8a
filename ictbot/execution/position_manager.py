from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

from ictbot.clock import is_past_local_cutoff
from ictbot.config import ExitConfig
from ictbot.data.candles import Candle
from ictbot.execution.paper_trader import LedgerPosting, PaperTrader, price_move_pct
from ictbot.monitoring.alerts import AlertDispatcher, format_risk_block, format_trade_closed, format_trade_opened
from ictbot.storage.journal import Journal
from ictbot.storage.models import Trade, TradeEvent, TradeStatus
from ictbot.storage.trade_csv import TradeCsvLogger
from ictbot.strategy.exits import evaluate_exit
from ictbot.strategy.risk import RiskCheck, RiskManager
from ictbot.strategy.signal import TradingSignal
from ictbot.strategy.structure import StructureState

LOGGER = logging.getLogger(__name__)


class PositionManager:
    """Single-position lifecycle: risk gate, paper open, per-cycle management, closure bookkeeping."""

    def __init__(
        self,
        *,
        risk: RiskManager,
        trader: PaperTrader,
        exit_config: ExitConfig | None = None,
        journal: Journal | None = None,
        trade_log: TradeCsvLogger | None = None,
        alerts: AlertDispatcher | None = None,
        balance: float | None = None,
        recent_limit: int = 20,
    ):
        self.risk = risk
        self.trader = trader
        self.exit = exit_config or ExitConfig()
        self.journal = journal
        self.trade_log = trade_log
        self.alerts = alerts
        self.balance = balance if balance is not None else risk.risk.initial_equity
        self.recent_limit = recent_limit
        self.trades: list[Trade] = []
        self.closed: list[Trade] = []
        self.last_check: RiskCheck | None = None

    def open_trades(self) -> list[Trade]:
        return [trade for trade in self.trades if trade.is_live]

    def has_open_position(self) -> bool:
        return bool(self.open_trades())

    def handle_signal(self, signal: TradingSignal, now: datetime) -> Trade | None:
        if self.has_open_position():
            LOGGER.info("Signal %s ignored: a position is already open", signal.direction)
            return None

        if is_past_local_cutoff(now, self.exit.time_exit_local, self.exit.timezone):
            LOGGER.info("Signal %s ignored: past the %s entry cutoff", signal.direction, self.exit.time_exit_local)
            return None

        check = self.risk.check(
            entry_price=signal.entry_price,
            stop_loss=signal.stop_loss,
            risk_reward=signal.risk_reward,
            balance=self.balance,
        )
        self.last_check = check
        if not check.allowed:
            LOGGER.warning("Risk blocked %s signal: %s", signal.direction, check.reason)
            self._alert("RISK_BLOCK", format_risk_block(check), level="warning", dedupe_key=f"risk:{check.reason}")
            return None

        trade = self.trader.open_trade(signal, size_usdt=check.position_size, leverage=check.leverage, now=now)
        self.trades.append(trade)
        self._persist(trade)
        self._alert("TRADE_OPENED", format_trade_opened(trade), dedupe_key=trade.id)
        return trade

    def monitor(self, candle: Candle, now: datetime, structure: StructureState | None = None) -> list[LedgerPosting]:
        """Run one management pass over live trades against the latest closed candle."""
        kill = self.risk.is_kill_switch_active()
        postings: list[LedgerPosting] = []
        for trade in list(self.trades):
            if not trade.is_live:
                continue
            status_before = trade.status
            trade_postings: list[LedgerPosting] = []
            if kill and trade.status == TradeStatus.PENDING:
                self.trader.cancel(trade, now, "kill switch")
            elif kill:
                decision = evaluate_exit(trade, candle.close, now, structure, True, self.exit)
                trade_postings += self.trader.apply_exit(trade, decision, now)
            else:
                trade_postings += self.trader.update(trade, candle, now)
                if trade.status in (TradeStatus.OPEN, TradeStatus.TP1_HIT):
                    decision = evaluate_exit(trade, candle.close, now, structure, False, self.exit)
                    trade_postings += self.trader.apply_exit(trade, decision, now)

            self._apply(trade_postings)
            postings += trade_postings
            if trade.status != status_before or trade_postings:
                self._persist(trade)
            if not trade.is_live:
                self._finalize(trade, now)
        return postings

    def force_close_all(self, price: float, now: datetime) -> list[Trade]:
        closed: list[Trade] = []
        for trade in list(self.trades):
            if not trade.is_live:
                continue
            if trade.status == TradeStatus.PENDING:
                self.trader.cancel(trade, now, "shutdown")
            else:
                self._apply([self.trader.close(trade, price, TradeEvent.MANUAL_CLOSE, now)])
            self._persist(trade)
            self._finalize(trade, now)
            closed.append(trade)
        return closed

    def unrealized_pnl(self, price: float) -> float:
        return sum(
            trade.remaining_size * price_move_pct(trade.direction, trade.entry_price, price)
            for trade in self.trades
            if trade.status in (TradeStatus.OPEN, TradeStatus.TP1_HIT)
        )

    def equity(self, price: float) -> float:
        return self.balance + self.unrealized_pnl(price)

    def _apply(self, postings: list[LedgerPosting]) -> None:
        for posting in postings:
            self.balance += posting.amount

    def _finalize(self, trade: Trade, now: datetime) -> None:
        self.trades.remove(trade)
        self.closed.append(trade)
        del self.closed[: -self.recent_limit]
        if not trade.is_filled:
            return
        self.risk.record_trade_result(trade.pnl_usdt, now)
        if self.trade_log is not None:
            try:
                self.trade_log.append(trade)
            except OSError as exc:
                LOGGER.warning("Trade CSV write failed for %s: %s", trade.id, exc)
        self._alert("TRADE_CLOSED", format_trade_closed(trade), dedupe_key=f"closed:{trade.id}")

    def _persist(self, trade: Trade) -> None:
        if self.journal is None:
            return
        try:
            self.journal.upsert_trade(trade)
        except (sqlite3.Error, OSError) as exc:
            LOGGER.warning("Trade persistence failed for %s: %s", trade.id, exc)

    def _alert(self, event: str, message: str, *, level: str = "info", dedupe_key: str | None = None) -> None:
        if self.alerts is None:
            return
        self.alerts.send(event=event, message=message, level=level, dedupe_key=dedupe_key)
