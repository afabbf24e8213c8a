from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime

from ictbot.clock import trading_day
from ictbot.config import AppConfig
from ictbot.data.candles import Candle, merge_candles
from ictbot.execution.paper_trader import LedgerPosting, PaperTrader
from ictbot.execution.position_manager import PositionManager
from ictbot.monitoring.alerts import AlertDispatcher, format_bias, format_signal
from ictbot.storage.journal import Journal
from ictbot.storage.models import SignalRecord, Trade
from ictbot.storage.trade_csv import TradeCsvLogger
from ictbot.strategy.bias import BiasInputs, DailyBias, compute_daily_bias, no_trade_bias
from ictbot.strategy.debounce import SmsDebounce
from ictbot.strategy.displacement import ZERO_DISPLACEMENT, DisplacementResult, score_recent_displacement
from ictbot.strategy.fvg import FairValueGap, detect_fvgs, merge_fvgs, update_fvg_states
from ictbot.strategy.liquidity import (
    LiquidityLevel,
    active_levels,
    map_liquidity_levels,
    update_liquidity_states,
)
from ictbot.strategy.order_blocks import OrderBlock, detect_order_blocks, merge_order_blocks, update_order_blocks
from ictbot.strategy.risk import RiskManager
from ictbot.strategy.sessions import SessionCalendar
from ictbot.strategy.signal import SignalContext, SignalDecision, detect_signal
from ictbot.strategy.structure import StructureState, detect_sms
from ictbot.strategy.sweeps import Sweep, qualifying_sweeps, remember_sweeps, scan_for_sweeps
from ictbot.strategy.swings import SwingPoint, detect_all_swings, merge_new_swings

LOGGER = logging.getLogger(__name__)

_DOWNGRADE = {"SMS_BULLISH": "CHOCH_BULLISH", "SMS_BEARISH": "CHOCH_BEARISH"}


@dataclass(slots=True)
class BotContext:
    """Everything one analysis cycle reads and writes. Owned by the scheduler."""

    config: AppConfig
    calendar: SessionCalendar
    risk: RiskManager
    positions: PositionManager
    journal: Journal | None = None
    alerts: AlertDispatcher | None = None
    candles: dict[str, list[Candle]] = field(default_factory=dict)
    swings: dict[str, list[SwingPoint]] = field(default_factory=dict)
    swing_versions: dict[str, int] = field(default_factory=dict)
    liquidity_levels: list[LiquidityLevel] = field(default_factory=list)
    fvgs: list[FairValueGap] = field(default_factory=list)
    order_blocks: list[OrderBlock] = field(default_factory=list)
    recent_sweeps: list[Sweep] = field(default_factory=list)
    structures: dict[str, StructureState] = field(default_factory=dict)
    displacement: DisplacementResult = ZERO_DISPLACEMENT
    daily_bias: DailyBias | None = None
    debounce: SmsDebounce = field(default_factory=SmsDebounce)
    last_price: float | None = None
    last_decision: SignalDecision | None = None

    @property
    def execution_timeframe(self) -> str:
        return self.config.signal.execution_timeframes[0]


def build_context(
    config: AppConfig,
    *,
    journal: Journal | None = None,
    alerts: AlertDispatcher | None = None,
    trade_log: TradeCsvLogger | None = None,
) -> BotContext:
    risk = RiskManager(config.risk)
    positions = PositionManager(
        risk=risk,
        trader=PaperTrader(config.paper, config.exit),
        exit_config=config.exit,
        journal=journal,
        trade_log=trade_log,
        alerts=alerts,
        balance=config.risk.initial_equity,
    )
    return BotContext(
        config=config,
        calendar=SessionCalendar(config.sessions),
        risk=risk,
        positions=positions,
        journal=journal,
        alerts=alerts,
    )


def restore_swings(ctx: BotContext) -> int:
    """Cold start: reload persisted swings so structure is available before backfill completes."""
    if ctx.journal is None:
        return 0
    restored = 0
    for timeframe in ctx.config.scheduler.timeframes:
        try:
            swings = ctx.journal.load_swings(timeframe, ctx.config.cache.max_swings)
        except sqlite3.Error as exc:
            LOGGER.warning("Swing restore failed for %s: %s", timeframe, exc)
            continue
        ctx.swings[timeframe] = swings
        ctx.swing_versions[timeframe] = len(swings)
        restored += len(swings)
    return restored


def ingest_candles(ctx: BotContext, timeframe: str, candles: list[Candle]) -> list[SwingPoint]:
    cache = ctx.config.cache
    merged = merge_candles(ctx.candles.get(timeframe, []), candles, cache.max_candles)
    ctx.candles[timeframe] = merged
    if merged and timeframe == ctx.execution_timeframe:
        ctx.last_price = merged[-1].close

    detected = detect_all_swings(merged, ctx.config.swings.lookback, timeframe)
    ctx.swings[timeframe], added = merge_new_swings(ctx.swings.get(timeframe, []), detected, cache.max_swings)
    ctx.swing_versions[timeframe] = ctx.swing_versions.get(timeframe, 0) + len(added)
    if added and ctx.journal is not None:
        try:
            ctx.journal.insert_swings(added)
        except (sqlite3.Error, OSError) as exc:
            LOGGER.warning("Swing persistence failed for %s: %s", timeframe, exc)
    return added


def _map_levels(ctx: BotContext, now: datetime) -> list[LiquidityLevel]:
    ranges = ctx.calendar.session_ranges(ctx.candles.get("H1", []), now)
    return map_liquidity_levels(ctx.swings, ctx.candles.get("D1", []), now, ctx.config.liquidity, ranges)


def refresh_daily_bias(ctx: BotContext, now: datetime) -> DailyBias:
    cfg = ctx.config
    fast_tf, slow_tf = cfg.bias.fast_timeframe, cfg.bias.slow_timeframe
    fast_candles = ctx.candles.get(fast_tf, [])
    price = ctx.last_price if ctx.last_price is not None else (fast_candles[-1].close if fast_candles else None)
    if price is None:
        ctx.daily_bias = no_trade_bias(trading_day(now, cfg.timezone), "NO_PRICE")
        return ctx.daily_bias

    levels = ctx.liquidity_levels or _map_levels(ctx, now)
    exec_candles = ctx.candles.get(ctx.execution_timeframe, [])
    ctx.liquidity_levels = update_liquidity_states(levels, exec_candles, now, cfg.liquidity)
    inputs = BiasInputs(
        fast_swings=ctx.swings.get(fast_tf, []),
        slow_swings=ctx.swings.get(slow_tf, []),
        fast_candles=fast_candles,
        liquidity_levels=ctx.liquidity_levels,
        current_price=price,
        session=ctx.calendar.current(now),
        fast_timeframe=fast_tf,
        slow_timeframe=slow_tf,
    )
    ctx.daily_bias = compute_daily_bias(inputs, now, cfg.bias, cfg.timezone)
    if ctx.alerts is not None:
        ctx.alerts.send(event="DAILY_BIAS", message=format_bias(ctx.daily_bias), dedupe_key=f"bias:{ctx.daily_bias.date}")
    return ctx.daily_bias


def _update_structures(ctx: BotContext) -> None:
    cfg = ctx.config
    timeframes = list(dict.fromkeys([*cfg.signal.execution_timeframes, cfg.exit.management_timeframe]))
    for timeframe in timeframes:
        state = detect_sms(timeframe, ctx.candles.get(timeframe, []), ctx.swings.get(timeframe, []), cfg.displacement)
        if not ctx.debounce.admit(timeframe, state.last_event, ctx.swing_versions.get(timeframe, 0)):
            state.last_event = _DOWNGRADE[state.last_event]  # type: ignore[assignment]
        ctx.structures[timeframe] = state


def _log_decision(ctx: BotContext, decision: SignalDecision, now: datetime, session: str | None) -> None:
    if ctx.journal is None:
        return
    signal = decision.signal
    record = SignalRecord(
        created_at=now,
        direction=decision.direction,
        bias=ctx.daily_bias.bias if ctx.daily_bias is not None else "NONE",
        session=session,
        accepted=signal is not None,
        reason_codes=decision.reason_codes,
        confidence=signal.confidence if signal is not None else None,
        risk_reward=signal.risk_reward if signal is not None else None,
        payload={
            "entry": signal.entry_price if signal is not None else None,
            "sweeps": len(ctx.recent_sweeps),
            "fvgs": len(ctx.fvgs),
            "levels": len(ctx.liquidity_levels),
        },
    )
    try:
        ctx.journal.log_signal(record)
    except (sqlite3.Error, OSError) as exc:
        LOGGER.warning("Signal journal write failed: %s", exc)


def run_analysis_cycle(ctx: BotContext, now: datetime) -> SignalDecision | None:
    """One pass over the execution caches. Returns None when the cycle exits before the signal stage."""
    cfg = ctx.config
    exec_tf = ctx.execution_timeframe
    candles = ctx.candles.get(exec_tf, [])
    if not candles:
        return None

    ctx.fvgs = update_fvg_states(ctx.fvgs, candles[-cfg.cache.fvg_update_candles :])

    session = ctx.calendar.current(now)
    if session is None or not session.tradeable:
        LOGGER.debug("Outside killzone (%s), analysis skipped", session.name if session else "NONE")
        return None
    if len(candles) < cfg.cache.min_execution_candles:
        LOGGER.info("Only %d %s candles cached, analysis skipped", len(candles), exec_tf)
        return None
    bias = ctx.daily_bias
    if bias is None or bias.date != trading_day(now, cfg.timezone):
        bias = refresh_daily_bias(ctx, now)

    window = cfg.sweep.scan_candles
    history, recent = candles[:-window], candles[-window:]
    levels = update_liquidity_states(_map_levels(ctx, now), history, now, cfg.liquidity)
    new_sweeps = scan_for_sweeps(active_levels(levels), recent, cfg.sweep)
    ctx.liquidity_levels = update_liquidity_states(levels, recent, now, cfg.liquidity)
    known = {sweep.id for sweep in ctx.recent_sweeps}
    ctx.recent_sweeps = remember_sweeps(ctx.recent_sweeps, new_sweeps, cfg.cache.max_sweeps)
    for sweep in new_sweeps:
        if sweep.id in known:
            continue
        LOGGER.info(
            "Sweep of %s %.2f (%s, score=%d)",
            sweep.level.type.value,
            sweep.level.price,
            sweep.confirmation,
            sweep.score,
        )

    for timeframe in cfg.signal.execution_timeframes:
        tf_candles = ctx.candles.get(timeframe, [])
        detected = update_fvg_states(detect_fvgs(tf_candles, timeframe, cfg.fvg, cfg.displacement), tf_candles)
        ctx.fvgs = merge_fvgs(ctx.fvgs, detected, now, cfg.fvg.max_age_hours)

    blocks = detect_order_blocks(candles, exec_tf, cfg.order_blocks, cfg.displacement)
    ctx.order_blocks = update_order_blocks(
        merge_order_blocks(ctx.order_blocks, blocks, cfg.cache.max_order_blocks),
        candles,
    )

    _update_structures(ctx)
    ctx.displacement = score_recent_displacement(candles, cfg.displacement.sms_window, cfg.displacement)

    decision = detect_signal(
        SignalContext(
            bias=bias,
            session=session,
            sweeps=qualifying_sweeps(ctx.recent_sweeps, cfg.sweep.min_score_for_trigger),
            fvgs=ctx.fvgs,
            liquidity_levels=ctx.liquidity_levels,
            structures=ctx.structures,
            candles=ctx.candles,
            swings=ctx.swings,
            current_price=ctx.last_price if ctx.last_price is not None else candles[-1].close,
            now=now,
        ),
        cfg.signal,
        min_rr=cfg.risk.min_rr,
        min_sweep_score=cfg.sweep.min_score_for_trigger,
    )
    ctx.last_decision = decision
    _log_decision(ctx, decision, now, session.name)
    if decision.signal is None:
        LOGGER.info("No signal (%s) bias=%s session=%s", decision.reason, bias.bias, session.name)
        return decision

    if ctx.alerts is not None:
        ctx.alerts.send(event="SIGNAL", message=format_signal(decision.signal), dedupe_key=f"signal:{decision.signal.entry_fvg.id}")
    ctx.positions.handle_signal(decision.signal, now)
    return decision


def monitor_positions(ctx: BotContext, now: datetime) -> list[LedgerPosting]:
    candles = ctx.candles.get(ctx.execution_timeframe, [])
    if not candles or not ctx.positions.trades:
        return []
    mgmt_tf = ctx.config.exit.management_timeframe
    structure = detect_sms(mgmt_tf, ctx.candles.get(mgmt_tf, []), ctx.swings.get(mgmt_tf, []), ctx.config.displacement)
    return ctx.positions.monitor(candles[-1], now, structure)


def refresh_equity(ctx: BotContext, now: datetime) -> float | None:
    if ctx.last_price is None:
        return None
    equity = ctx.positions.equity(ctx.last_price)
    ctx.risk.update_equity(equity, now)
    return equity


def reset_daily(ctx: BotContext) -> None:
    ctx.risk.reset_daily()
    LOGGER.info("Daily risk counters reset")


def reset_weekly(ctx: BotContext) -> None:
    ctx.risk.reset_weekly()
    LOGGER.info("Weekly risk counters reset")


def shutdown(ctx: BotContext, now: datetime) -> list[Trade]:
    if not ctx.positions.trades:
        return []
    if ctx.last_price is None:
        LOGGER.warning("Shutdown with %d live trade(s) and no known price", len(ctx.positions.trades))
        return []
    closed = ctx.positions.force_close_all(ctx.last_price, now)
    LOGGER.info("Shutdown closed %d trade(s) at %.2f", len(closed), ctx.last_price)
    return closed
