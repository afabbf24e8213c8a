from __future__ import annotations

import argparse
import logging
import os
import signal
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

from ictbot.clock import should_poll_closed_candle, utc_now, week_start
from ictbot.config import AppConfig, load_config
from ictbot.data.bybit_client import BybitAPIError, BybitClient
from ictbot.data.candles import closed_only, load_candles_csv
from ictbot.monitoring.alerts import AlertConfig, AlertDispatcher
from ictbot.monitoring.dashboard import DashboardWriter
from ictbot.monitoring.status import build_status
from ictbot.runtime import (
    BotContext,
    build_context,
    ingest_candles,
    monitor_positions,
    refresh_daily_bias,
    refresh_equity,
    reset_daily,
    reset_weekly,
    restore_swings,
    run_analysis_cycle,
    shutdown,
)
from ictbot.storage.db import get_connection, init_db
from ictbot.storage.journal import Journal
from ictbot.storage.trade_csv import TradeCsvLogger

LOGGER = logging.getLogger("ict_bot")


@dataclass(slots=True)
class PollState:
    last_processed_closed_ts: dict[str, datetime | None] = field(default_factory=dict)
    last_poll_target_ts: dict[str, datetime | None] = field(default_factory=dict)
    last_poll_attempt_at: dict[str, datetime | None] = field(default_factory=dict)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="ICT price-action paper trading bot (Bybit public data)")
    parser.add_argument("--config", default="config.yaml", help="Path to YAML config")
    parser.add_argument("--once", action="store_true", help="Backfill, run a single scheduler tick and exit.")
    parser.add_argument(
        "--seed-csv",
        action="append",
        default=[],
        metavar="TF=PATH",
        help="Seed a timeframe cache from CSV before backfill (repeatable), e.g. M5=data/btc_m5.csv",
    )
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    return parser.parse_args()


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def build_client(config: AppConfig) -> BybitClient:
    bybit = config.bybit
    return BybitClient(
        os.getenv("BYBIT_BASE_URL", bybit.base_url),
        category=bybit.category,
        timeout_seconds=bybit.timeout_seconds,
        request_max_attempts=bybit.request_max_attempts,
        backoff_base_seconds=bybit.backoff_base_seconds,
        backoff_max_seconds=bybit.backoff_max_seconds,
    )


def build_alert_dispatcher(config: AppConfig) -> AlertDispatcher:
    return AlertDispatcher(
        AlertConfig(
            enabled=config.monitoring.alerts_enabled,
            discord_webhook=os.getenv("DISCORD_WEBHOOK_URL"),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID"),
            cooldown_seconds=config.monitoring.alert_cooldown_seconds,
        )
    )


def seed_from_csv(ctx: BotContext, entries: list[str]) -> None:
    for entry in entries:
        timeframe, _, path = entry.partition("=")
        if not path:
            raise ValueError(f"--seed-csv expects TF=PATH, got {entry!r}")
        candles = load_candles_csv(path, timeframe.strip().upper())
        ingest_candles(ctx, timeframe.strip().upper(), candles)
        LOGGER.info("Seeded %d %s candles from %s", len(candles), timeframe.upper(), path)


def backfill(ctx: BotContext, client: BybitClient, poll: PollState, now: datetime) -> None:
    config = ctx.config
    for timeframe in config.scheduler.timeframes:
        try:
            candles = closed_only(client.get_klines(config.bybit.symbol, timeframe, config.cache.backfill_candles), now)
        except BybitAPIError as exc:
            LOGGER.warning("Backfill failed for %s: %s", timeframe, exc)
            continue
        added = ingest_candles(ctx, timeframe, candles)
        if candles:
            poll.last_processed_closed_ts[timeframe] = candles[-1].timestamp
        LOGGER.info("Backfilled %s: %d candles, %d new swings", timeframe, len(candles), len(added))


def refresh_timeframe(ctx: BotContext, client: BybitClient, poll: PollState, timeframe: str, now: datetime) -> bool:
    scheduler = ctx.config.scheduler
    should_poll, target_closed_ts = should_poll_closed_candle(
        now_utc=now,
        timeframe=timeframe,
        last_processed_closed_ts=poll.last_processed_closed_ts.get(timeframe),
        last_attempt_target_ts=poll.last_poll_target_ts.get(timeframe),
        last_attempt_at=poll.last_poll_attempt_at.get(timeframe),
        close_grace_seconds=scheduler.candle_close_grace_seconds,
        retry_seconds=scheduler.candle_retry_seconds,
    )
    poll.last_poll_target_ts[timeframe] = target_closed_ts
    if not should_poll:
        return False

    poll.last_poll_attempt_at[timeframe] = now
    candles = closed_only(client.get_klines(ctx.config.bybit.symbol, timeframe, scheduler.fetch_limit), now)
    last = poll.last_processed_closed_ts.get(timeframe)
    if not candles or (last is not None and candles[-1].timestamp <= last):
        return False
    ingest_candles(ctx, timeframe, candles)
    poll.last_processed_closed_ts[timeframe] = candles[-1].timestamp
    return True


def run_tick(ctx: BotContext, client: BybitClient, poll: PollState, now: datetime) -> None:
    for timeframe in ctx.config.scheduler.timeframes:
        try:
            fresh = refresh_timeframe(ctx, client, poll, timeframe, now)
        except BybitAPIError as exc:
            LOGGER.warning("Candle fetch failed for %s, skipping this tick: %s", timeframe, exc)
            continue
        if not fresh:
            continue
        if timeframe == ctx.execution_timeframe:
            monitor_positions(ctx, now)
            run_analysis_cycle(ctx, now)
        elif timeframe == "H1":
            refresh_equity(ctx, now)
        elif timeframe == "D1":
            reset_daily(ctx)
            refresh_daily_bias(ctx, now)


def run_loop(
    ctx: BotContext,
    client: BybitClient,
    poll: PollState,
    dashboard: DashboardWriter,
    alerts: AlertDispatcher,
    *,
    once: bool,
) -> None:
    config = ctx.config
    stop_event = threading.Event()
    current_week = week_start(utc_now(), config.timezone)

    def _stop(signum: int, _frame: object) -> None:
        LOGGER.info("Received signal %s, shutting down.", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _stop)

    while not stop_event.is_set():
        now = utc_now()
        try:
            week = week_start(now, config.timezone)
            if week != current_week:
                reset_weekly(ctx)
                current_week = week
            run_tick(ctx, client, poll, now)
            dashboard.write(build_status(ctx, now), now)
        except Exception as exc:
            LOGGER.exception("Scheduler tick failed")
            alerts.send(event="TICK_ERROR", level="error", message=str(exc), dedupe_key="tick-error")
        if once:
            break
        stop_event.wait(config.scheduler.loop_seconds)

    closed = shutdown(ctx, utc_now())
    try:
        dashboard.write(build_status(ctx, utc_now()))
    except OSError as exc:
        LOGGER.warning("Final dashboard write failed: %s", exc)
    LOGGER.info("Stopped. %d trade(s) closed on shutdown.", len(closed))


def run() -> None:
    args = parse_args()
    load_dotenv()
    setup_logging(args.log_level or os.getenv("LOG_LEVEL", "INFO"))

    root = Path(__file__).resolve().parent
    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = root / config_path
    config = load_config(config_path)

    conn = get_connection(config.storage.sqlite_path)
    init_db(conn)
    journal = Journal(conn)
    alerts = build_alert_dispatcher(config)
    ctx = build_context(
        config,
        journal=journal,
        alerts=alerts,
        trade_log=TradeCsvLogger(config.storage.trades_csv_path),
    )
    LOGGER.info(
        "Starting paper bot | symbol=%s | timeframes=%s | timezone=%s | equity=%.2f",
        config.bybit.symbol,
        ",".join(config.scheduler.timeframes),
        config.timezone,
        config.risk.initial_equity,
    )

    restored = restore_swings(ctx)
    if restored:
        LOGGER.info("Restored %d persisted swings", restored)
    seed_from_csv(ctx, args.seed_csv)

    client = build_client(config)
    poll = PollState()
    now = utc_now()
    backfill(ctx, client, poll, now)
    refresh_equity(ctx, now)
    refresh_daily_bias(ctx, now)

    dashboard = DashboardWriter(os.getenv("DASHBOARD_PATH", config.monitoring.dashboard_path))
    run_loop(ctx, client, poll, dashboard, alerts, once=args.once)


if __name__ == "__main__":
    run()
