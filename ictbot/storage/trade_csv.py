from __future__ import annotations

import csv
from pathlib import Path
from typing import Any

from ictbot.storage.models import Trade

TRADE_FIELDS = [
    "id",
    "opened_at",
    "closed_at",
    "direction",
    "entry_price",
    "exit_price",
    "size_usdt",
    "leverage",
    "stop_loss",
    "tp1",
    "tp2",
    "tp1_hit",
    "pnl_usdt",
    "pnl_pct",
    "rr_achieved",
    "status",
    "displacement_score",
    "confidence",
    "sweep_id",
    "fvg_id",
    "is_paper",
]


def trade_row(trade: Trade) -> dict[str, Any]:
    return {
        "id": trade.id,
        "opened_at": trade.opened_at.isoformat() if trade.opened_at else "",
        "closed_at": trade.closed_at.isoformat() if trade.closed_at else "",
        "direction": trade.direction,
        "entry_price": round(trade.entry_price, 8),
        "exit_price": round(trade.exit_price, 8) if trade.exit_price is not None else "",
        "size_usdt": round(trade.size_usdt, 4),
        "leverage": trade.leverage,
        "stop_loss": round(trade.initial_stop, 8),
        "tp1": round(trade.tp1, 8),
        "tp2": round(trade.tp2, 8),
        "tp1_hit": int(trade.tp1_hit),
        "pnl_usdt": round(trade.pnl_usdt, 4),
        "pnl_pct": round(trade.pnl_pct, 4),
        "rr_achieved": round(trade.rr_achieved, 4),
        "status": trade.status.value,
        "displacement_score": trade.displacement_score,
        "confidence": trade.confidence,
        "sweep_id": trade.sweep_id or "",
        "fvg_id": trade.fvg_id or "",
        "is_paper": int(trade.is_paper),
    }


class TradeCsvLogger:
    """Append-only CSV of closed trades."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def append(self, trade: Trade) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        write_header = not self.path.exists() or self.path.stat().st_size == 0
        with self.path.open("a", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=TRADE_FIELDS)
            if write_header:
                writer.writeheader()
            writer.writerow(trade_row(trade))
