from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import requests

from ictbot.storage.models import Trade
from ictbot.strategy.bias import DailyBias
from ictbot.strategy.risk import RiskCheck
from ictbot.strategy.signal import TradingSignal

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class AlertConfig:
    enabled: bool = True
    discord_webhook: str | None = None
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    cooldown_seconds: int = 30


class AlertDispatcher:
    def __init__(self, config: AlertConfig):
        self.config = config
        self._last_sent_ts: dict[str, float] = {}

    def send(
        self,
        *,
        event: str,
        message: str,
        level: str = "info",
        context: dict[str, Any] | None = None,
        dedupe_key: str | None = None,
    ) -> None:
        if not self.config.enabled:
            return
        key = dedupe_key or event
        now = time.monotonic()
        prev = self._last_sent_ts.get(key)
        if prev is not None and (now - prev) < self.config.cooldown_seconds:
            return
        self._last_sent_ts[key] = now

        details = f"[{level.upper()}] {event}: {message}"
        if context:
            context_suffix = " | " + " ".join(f"{k}={v}" for k, v in context.items())
            details += context_suffix

        self._send_discord(details)
        self._send_telegram(details)

    def _send_discord(self, text: str) -> None:
        webhook = (self.config.discord_webhook or "").strip()
        if not webhook:
            return
        try:
            response = requests.post(webhook, json={"content": text}, timeout=10)
            response.raise_for_status()
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Discord alert failed: %s", exc)

    def _send_telegram(self, text: str) -> None:
        bot_token = (self.config.telegram_bot_token or "").strip()
        chat_id = (self.config.telegram_chat_id or "").strip()
        if not bot_token or not chat_id:
            return
        url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
        payload = {"chat_id": chat_id, "text": text}
        try:
            response = requests.post(url, json=payload, timeout=10)
            response.raise_for_status()
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Telegram alert failed: %s", exc)


def format_signal(signal: TradingSignal) -> str:
    return (
        f"{signal.direction} setup on {signal.timeframe} | entry {signal.entry_price:.2f} "
        f"sl {signal.stop_loss:.2f} tp1 {signal.tp1:.2f} tp2 {signal.tp2:.2f} | "
        f"RR {signal.risk_reward:.2f} | confidence {signal.confidence} | "
        f"sweep {signal.sweep.level.type.value}@{signal.sweep.level.price:.2f} score {signal.sweep.score}"
    )


def format_trade_opened(trade: Trade) -> str:
    return (
        f"PAPER {trade.direction} {trade.id} pending | entry {trade.entry_price:.2f} "
        f"size {trade.size_usdt:.2f} USDT x{trade.leverage} | sl {trade.stop_loss:.2f} "
        f"tp1 {trade.tp1:.2f} tp2 {trade.tp2:.2f}"
    )


def format_trade_closed(trade: Trade) -> str:
    exit_price = f"{trade.exit_price:.2f}" if trade.exit_price is not None else "-"
    return (
        f"{trade.id} {trade.status.value} | {trade.direction} {trade.entry_price:.2f} -> {exit_price} | "
        f"PnL {trade.pnl_usdt:+.2f} USDT ({trade.pnl_pct:+.2f}%) | RR {trade.rr_achieved:.2f}"
    )


def format_risk_block(check: RiskCheck) -> str:
    return f"Signal blocked by risk: {check.reason} | " + " ".join(f"{k}={v}" for k, v in check.metadata.items())


def format_bias(bias: DailyBias) -> str:
    draw = f"{bias.draw_type.value}@{bias.draw_level:.2f}" if bias.draw_type is not None and bias.draw_level is not None else "none"
    line = (
        f"{bias.date.isoformat()} bias {bias.bias} | framework {bias.framework} | draw {draw} | "
        f"zone {bias.zone or '-'} ({bias.zone_depth:.2f}) | AMD {bias.amd_phase} | "
        f"agree {'yes' if bias.both_tf_agree else 'no'}"
    )
    if bias.reason_codes:
        line += " | " + ",".join(bias.reason_codes)
    return line
