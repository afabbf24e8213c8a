from __future__ import annotations

from datetime import datetime
from typing import Any

from ictbot.runtime import BotContext
from ictbot.storage.models import Trade
from ictbot.strategy.liquidity import active_levels

COMMANDS = ("/status", "/bias", "/levels", "/trades", "/perf", "/risk", "/positions", "/kill")


def _trade_summary(trade: Trade) -> dict[str, Any]:
    return {
        "id": trade.id,
        "direction": trade.direction,
        "status": trade.status.value,
        "entry_price": round(trade.entry_price, 2),
        "stop_loss": round(trade.stop_loss, 2),
        "tp1": round(trade.tp1, 2),
        "tp2": round(trade.tp2, 2),
        "size_usdt": round(trade.size_usdt, 2),
        "pnl_usdt": round(trade.pnl_usdt, 2),
        "rr_achieved": round(trade.rr_achieved, 2),
    }


def performance_summary(trades: list[Trade], balance: float, streak: int) -> dict[str, Any]:
    filled = [t for t in trades if t.is_filled and not t.is_live]
    wins = [t for t in filled if t.pnl_usdt > 0]
    pnls = [t.pnl_usdt for t in filled]
    return {
        "trades": len(filled),
        "win_rate": round(len(wins) / len(filled) * 100.0, 1) if filled else 0.0,
        "total_pnl": round(sum(pnls), 2),
        "avg_rr": round(sum(t.rr_achieved for t in filled) / len(filled), 2) if filled else 0.0,
        "best": round(max(pnls), 2) if pnls else 0.0,
        "worst": round(min(pnls), 2) if pnls else 0.0,
        "loss_streak": streak,
        "balance": round(balance, 2),
    }


def build_status(ctx: BotContext, now: datetime) -> dict[str, Any]:
    session = ctx.calendar.current(now)
    bias = ctx.daily_bias
    recent = ctx.positions.closed[-ctx.config.monitoring.recent_trades :]
    return {
        "session": session.name if session is not None else None,
        "killzone": session is not None and session.tradeable,
        "session_line": ctx.calendar.status(now),
        "bias": bias.bias if bias is not None else None,
        "bias_date": bias.date.isoformat() if bias is not None else None,
        "amd_phase": bias.amd_phase if bias is not None else None,
        "last_price": ctx.last_price,
        "active_fvgs": len([g for g in ctx.fvgs if not g.is_terminal]),
        "liquidity_levels": len(active_levels(ctx.liquidity_levels)),
        "order_blocks": len([ob for ob in ctx.order_blocks if ob.is_valid]),
        "recent_sweeps": len(ctx.recent_sweeps),
        "displacement_score": ctx.displacement.score,
        "last_decision": ctx.last_decision.reason if ctx.last_decision is not None else None,
        "open_positions": [_trade_summary(t) for t in ctx.positions.open_trades()],
        "recent_trades": [_trade_summary(t) for t in recent],
        "risk": ctx.risk.snapshot(),
        "manual_kill": ctx.risk.state.manual_kill,
        "performance": performance_summary(
            ctx.positions.closed,
            ctx.positions.balance,
            ctx.risk.state.consecutive_losses,
        ),
    }


def _format_levels(ctx: BotContext) -> str:
    levels = sorted(active_levels(ctx.liquidity_levels), key=lambda lv: lv.score, reverse=True)[:10]
    if not levels:
        return "No active liquidity levels"
    return "\n".join(f"{lv.type.value:<12} {lv.price:>12.2f}  score {lv.score}  {lv.timeframe}" for lv in levels)


def _format_trades(rows: list[dict[str, Any]], empty: str) -> str:
    if not rows:
        return empty
    return "\n".join(
        f"{row['id']} {row['direction']} {row['status']} entry {row['entry_price']} pnl {row['pnl_usdt']:+.2f}"
        for row in rows
    )


def format_command(ctx: BotContext, command: str, now: datetime) -> str:
    name = command.strip().split()[0].lower() if command.strip() else ""
    if name == "/kill":
        ctx.risk.set_manual_kill(not ctx.risk.state.manual_kill)
        return "Kill switch ENGAGED" if ctx.risk.state.manual_kill else "Kill switch released"

    status = build_status(ctx, now)
    if name == "/status":
        return (
            f"{status['session_line']}\n"
            f"bias {status['bias'] or '-'} | price {status['last_price'] or '-'}\n"
            f"gaps {status['active_fvgs']} | levels {status['liquidity_levels']} | "
            f"order blocks {status['order_blocks']} | open {len(status['open_positions'])}\n"
            f"last decision {status['last_decision'] or '-'}"
        )
    if name == "/bias":
        if ctx.daily_bias is None:
            return "Bias not computed yet"
        bias = ctx.daily_bias
        draw = f"{bias.draw_type.value} {bias.draw_level:.2f}" if bias.draw_type and bias.draw_level else "-"
        return (
            f"{bias.date} {bias.bias} ({bias.fast_trend}/{bias.slow_trend})\n"
            f"framework {bias.framework} | draw {draw} | zone {bias.zone or '-'} | AMD {bias.amd_phase}"
        )
    if name == "/levels":
        return _format_levels(ctx)
    if name == "/trades":
        return _format_trades(status["recent_trades"], "No closed trades yet")
    if name == "/positions":
        return _format_trades(status["open_positions"], "No open positions")
    if name == "/perf":
        perf = status["performance"]
        return (
            f"trades {perf['trades']} | win rate {perf['win_rate']}% | pnl {perf['total_pnl']:+.2f}\n"
            f"avg RR {perf['avg_rr']} | best {perf['best']:+.2f} | worst {perf['worst']:+.2f} | "
            f"streak {perf['loss_streak']} | balance {perf['balance']:.2f}"
        )
    if name == "/risk":
        risk = status["risk"]
        return (
            f"equity {risk['current_equity']:.2f} (peak {risk['peak_equity']:.2f}, dd {risk['drawdown_pct'] * 100:.2f}%)\n"
            f"daily {risk['daily_pnl']:+.2f} | weekly {risk['weekly_pnl']:+.2f} | trades today {risk['trades_today']}\n"
            f"risk per trade {risk['risk_percent'] * 100:.2f}% | kill switch {'ON' if risk['kill_switch_active'] else 'off'}"
        )
    return "Unknown command. Available: " + " ".join(COMMANDS)
