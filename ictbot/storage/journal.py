from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone

from ictbot.storage.models import SignalRecord, Trade, TradeStatus
from ictbot.strategy.swings import SwingPoint


def _to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class Journal:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.lock = threading.Lock()

    def upsert_trade(self, trade: Trade) -> None:
        with self.lock:
            self.conn.execute(
                """
                INSERT INTO trades (
                    id, created_at, opened_at, closed_at, direction, entry_price, exit_price, size_usdt,
                    leverage, stop_loss, initial_stop, tp1, tp2, tp1_hit, pnl_usdt, pnl_pct, rr_achieved,
                    status, sweep_id, fvg_id, displacement_score, confidence, timeframe, is_paper
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    opened_at=excluded.opened_at,
                    closed_at=excluded.closed_at,
                    entry_price=excluded.entry_price,
                    exit_price=excluded.exit_price,
                    stop_loss=excluded.stop_loss,
                    tp1_hit=excluded.tp1_hit,
                    pnl_usdt=excluded.pnl_usdt,
                    pnl_pct=excluded.pnl_pct,
                    rr_achieved=excluded.rr_achieved,
                    status=excluded.status
                """,
                (
                    trade.id,
                    _to_iso(trade.created_at),
                    _to_iso(trade.opened_at),
                    _to_iso(trade.closed_at),
                    trade.direction,
                    trade.entry_price,
                    trade.exit_price,
                    trade.size_usdt,
                    trade.leverage,
                    trade.stop_loss,
                    trade.initial_stop,
                    trade.tp1,
                    trade.tp2,
                    int(trade.tp1_hit),
                    trade.pnl_usdt,
                    trade.pnl_pct,
                    trade.rr_achieved,
                    trade.status.value,
                    trade.sweep_id,
                    trade.fvg_id,
                    trade.displacement_score,
                    trade.confidence,
                    trade.timeframe,
                    int(trade.is_paper),
                ),
            )
            self.conn.commit()

    def get_trades(self, limit: int = 50) -> list[Trade]:
        rows = self.conn.execute(
            "SELECT * FROM trades ORDER BY created_at DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [self._row_to_trade(row) for row in rows]

    def insert_swings(self, swings: list[SwingPoint]) -> int:
        if not swings:
            return 0
        with self.lock:
            cursor = self.conn.executemany(
                """
                INSERT OR IGNORE INTO swings (timeframe, timestamp, kind, price, candle_index, method)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [(s.timeframe, _to_iso(s.timestamp), s.kind, s.price, s.index, s.method) for s in swings],
            )
            self.conn.commit()
            return cursor.rowcount

    def load_swings(self, timeframe: str, limit: int = 200) -> list[SwingPoint]:
        rows = self.conn.execute(
            "SELECT * FROM swings WHERE timeframe = ? ORDER BY timestamp DESC LIMIT ?",
            (timeframe, limit),
        ).fetchall()
        return [
            SwingPoint(
                index=int(row["candle_index"]),
                timestamp=_from_iso(row["timestamp"]) or datetime.now(timezone.utc),
                price=float(row["price"]),
                kind=row["kind"],
                timeframe=row["timeframe"],
                method=row["method"],
            )
            for row in reversed(rows)
        ]

    def log_signal(self, record: SignalRecord) -> None:
        with self.lock:
            self.conn.execute(
                """
                INSERT INTO signals (
                    created_at, direction, bias, session, accepted, confidence, rr, reason_codes, payload
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    _to_iso(record.created_at),
                    record.direction,
                    record.bias,
                    record.session,
                    int(record.accepted),
                    record.confidence,
                    record.risk_reward,
                    json.dumps(record.reason_codes),
                    json.dumps(record.payload),
                ),
            )
            self.conn.commit()

    def count_signals(self, *, accepted: bool | None = None) -> int:
        if accepted is None:
            row = self.conn.execute("SELECT COUNT(*) FROM signals").fetchone()
        else:
            row = self.conn.execute("SELECT COUNT(*) FROM signals WHERE accepted = ?", (int(accepted),)).fetchone()
        return int(row[0])

    @staticmethod
    def _row_to_trade(row: sqlite3.Row) -> Trade:
        return Trade(
            id=row["id"],
            direction=row["direction"],
            entry_price=float(row["entry_price"]),
            size_usdt=float(row["size_usdt"]),
            leverage=int(row["leverage"]),
            stop_loss=float(row["stop_loss"]),
            initial_stop=float(row["initial_stop"]),
            tp1=float(row["tp1"]),
            tp2=float(row["tp2"]),
            created_at=_from_iso(row["created_at"]) or datetime.now(timezone.utc),
            entry_zone_top=float(row["entry_price"]),
            entry_zone_bottom=float(row["entry_price"]),
            status=TradeStatus(row["status"]),
            opened_at=_from_iso(row["opened_at"]),
            closed_at=_from_iso(row["closed_at"]),
            exit_price=float(row["exit_price"]) if row["exit_price"] is not None else None,
            tp1_hit=bool(row["tp1_hit"]),
            pnl_usdt=float(row["pnl_usdt"]),
            pnl_pct=float(row["pnl_pct"]),
            rr_achieved=float(row["rr_achieved"]),
            sweep_id=row["sweep_id"],
            fvg_id=row["fvg_id"],
            displacement_score=int(row["displacement_score"]),
            confidence=int(row["confidence"]),
            timeframe=row["timeframe"],
            is_paper=bool(row["is_paper"]),
        )
