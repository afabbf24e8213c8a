from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ictbot.strategy.structure import StructureEvent

LOGGER = logging.getLogger(__name__)

_SMS_EVENTS = ("SMS_BULLISH", "SMS_BEARISH")


@dataclass(slots=True)
class SmsDebounce:
    """Last admitted SMS per timeframe, versioned by a per-timeframe count of swings ever added.

    The version only grows, so a capped swing cache that slides without
    changing length still re-arms the SMS once a new swing lands.
    """

    seen: dict[str, tuple[StructureEvent, int]] = field(default_factory=dict)

    def admit(self, timeframe: str, event: StructureEvent, swing_version: int) -> bool:
        if event not in _SMS_EVENTS:
            return True
        key = (event, swing_version)
        if self.seen.get(timeframe) == key:
            LOGGER.debug("SMS %s on %s suppressed (swing_version=%d)", event, timeframe, swing_version)
            return False
        self.seen[timeframe] = key
        return True

    def clear(self) -> None:
        self.seen.clear()
