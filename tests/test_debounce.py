from __future__ import annotations

from ictbot.strategy.debounce import SmsDebounce


def test_repeated_sms_is_suppressed_until_structure_changes() -> None:
    debounce = SmsDebounce()

    assert debounce.admit("M5", "SMS_BULLISH", 6) is True
    assert debounce.admit("M5", "SMS_BULLISH", 6) is False
    # A new swing un-suppresses it.
    assert debounce.admit("M5", "SMS_BULLISH", 7) is True
    # So does a direction flip.
    assert debounce.admit("M5", "SMS_BEARISH", 7) is True
    assert debounce.admit("M5", "SMS_BEARISH", 7) is False


def test_timeframes_are_tracked_separately() -> None:
    debounce = SmsDebounce()
    assert debounce.admit("M5", "SMS_BULLISH", 6)
    assert debounce.admit("M15", "SMS_BULLISH", 6)
    assert set(debounce.seen) == {"M5", "M15"}


def test_non_sms_events_pass_and_clear_resets() -> None:
    debounce = SmsDebounce()
    assert debounce.admit("M5", "CHOCH_BULLISH", 6)
    assert debounce.admit("M5", "CHOCH_BULLISH", 6)
    assert debounce.admit("M5", "NONE", 6)
    assert debounce.seen == {}

    debounce.admit("M5", "SMS_BULLISH", 6)
    debounce.clear()
    assert debounce.admit("M5", "SMS_BULLISH", 6)
