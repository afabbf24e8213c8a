from __future__ import annotations

import sqlite3
from pathlib import Path


def get_connection(db_path: str | Path) -> sqlite3.Connection:
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False, timeout=30.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=30000;")
    return conn


def _table_columns(conn: sqlite3.Connection, table_name: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table_name})").fetchall()
    return {str(row[1]) for row in rows}


def _ensure_column(
    conn: sqlite3.Connection,
    table_name: str,
    column_name: str,
    column_sql: str,
) -> None:
    if column_name in _table_columns(conn, table_name):
        return
    conn.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_sql}")


def init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS trades (
            id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL,
            opened_at TEXT,
            closed_at TEXT,
            direction TEXT NOT NULL,
            entry_price REAL NOT NULL,
            exit_price REAL,
            size_usdt REAL NOT NULL,
            leverage INTEGER NOT NULL,
            stop_loss REAL NOT NULL,
            initial_stop REAL NOT NULL,
            tp1 REAL NOT NULL,
            tp2 REAL NOT NULL,
            tp1_hit INTEGER NOT NULL DEFAULT 0,
            pnl_usdt REAL NOT NULL DEFAULT 0,
            pnl_pct REAL NOT NULL DEFAULT 0,
            rr_achieved REAL NOT NULL DEFAULT 0,
            status TEXT NOT NULL,
            sweep_id TEXT,
            fvg_id TEXT,
            displacement_score INTEGER NOT NULL DEFAULT 0,
            confidence INTEGER NOT NULL DEFAULT 0,
            timeframe TEXT NOT NULL DEFAULT 'M5',
            is_paper INTEGER NOT NULL DEFAULT 1
        );

        CREATE TABLE IF NOT EXISTS swings (
            timeframe TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            kind TEXT NOT NULL,
            price REAL NOT NULL,
            candle_index INTEGER NOT NULL,
            method TEXT NOT NULL,
            PRIMARY KEY (timeframe, timestamp, kind)
        );

        CREATE TABLE IF NOT EXISTS signals (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            created_at TEXT NOT NULL,
            direction TEXT,
            bias TEXT NOT NULL,
            session TEXT,
            accepted INTEGER NOT NULL,
            confidence INTEGER,
            rr REAL,
            reason_codes TEXT NOT NULL,
            payload TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_trades_status ON trades(status);
        CREATE INDEX IF NOT EXISTS idx_swings_tf_ts ON swings(timeframe, timestamp);
        """
    )
    # Runtime migration support for existing databases.
    _ensure_column(conn, "trades", "timeframe", "TEXT NOT NULL DEFAULT 'M5'")
    _ensure_column(conn, "trades", "confidence", "INTEGER NOT NULL DEFAULT 0")
    conn.commit()
