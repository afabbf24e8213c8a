from __future__ import annotations

from typing import Any

import pytest
import requests

from ictbot.monitoring import alerts
from ictbot.monitoring.alerts import AlertConfig, AlertDispatcher


class _Ok:
    def raise_for_status(self) -> None:
        return None


def _capture(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    posts: list[dict[str, Any]] = []

    def fake_post(url: str, json: dict[str, Any], timeout: int) -> _Ok:
        posts.append({"url": url, "json": json})
        return _Ok()

    monkeypatch.setattr(alerts.requests, "post", fake_post)
    return posts


def test_dedupe_key_respects_cooldown(monkeypatch: pytest.MonkeyPatch) -> None:
    posts = _capture(monkeypatch)
    dispatcher = AlertDispatcher(AlertConfig(discord_webhook="https://discord.test/hook", cooldown_seconds=60))

    dispatcher.send(event="SIGNAL", message="LONG setup", dedupe_key="signal:fvg_1")
    dispatcher.send(event="SIGNAL", message="LONG setup", dedupe_key="signal:fvg_1")
    dispatcher.send(event="SIGNAL", message="SHORT setup", dedupe_key="signal:fvg_2")

    assert [p["json"]["content"] for p in posts] == ["[INFO] SIGNAL: LONG setup", "[INFO] SIGNAL: SHORT setup"]


def test_telegram_and_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    posts = _capture(monkeypatch)
    AlertDispatcher(AlertConfig(telegram_bot_token="T0K", telegram_chat_id="42")).send(
        event="RISK_BLOCK", message="MAX_TRADES_REACHED", level="warning", context={"trades_today": 1}
    )
    AlertDispatcher(AlertConfig(enabled=False, discord_webhook="https://discord.test/hook")).send(event="X", message="y")

    assert len(posts) == 1
    assert posts[0]["url"] == "https://api.telegram.org/botT0K/sendMessage"
    assert posts[0]["json"] == {"chat_id": "42", "text": "[WARNING] RISK_BLOCK: MAX_TRADES_REACHED | trades_today=1"}


def test_transport_failure_is_logged_not_raised(monkeypatch: pytest.MonkeyPatch) -> None:
    def boom(url: str, json: dict[str, Any], timeout: int) -> None:
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(alerts.requests, "post", boom)
    AlertDispatcher(AlertConfig(discord_webhook="https://discord.test/hook")).send(event="TICK_ERROR", message="x")
