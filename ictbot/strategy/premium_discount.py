from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from ictbot.strategy.contracts import Direction
from ictbot.strategy.swings import SwingPoint

Zone = Literal["PREMIUM", "DISCOUNT"]

OTE_SHALLOW = 0.382
OTE_DEEP = 0.21


@dataclass(slots=True, frozen=True)
class PremiumDiscount:
    high: float
    low: float
    equilibrium: float
    zone: Zone
    depth: float

    def in_zone_for(self, direction: Direction) -> bool:
        return self.zone == ("DISCOUNT" if direction == "LONG" else "PREMIUM")


def latest_range(swings: list[SwingPoint]) -> tuple[float | None, float | None]:
    highs = [s for s in swings if s.kind == "HIGH"]
    lows = [s for s in swings if s.kind == "LOW"]
    high = max(highs, key=lambda s: s.timestamp).price if highs else None
    low = max(lows, key=lambda s: s.timestamp).price if lows else None
    return high, low


def premium_discount(price: float, high: float, low: float) -> PremiumDiscount:
    top = max(high, low)
    bottom = min(high, low)
    eq = (top + bottom) / 2.0
    zone: Zone = "PREMIUM" if price >= eq else "DISCOUNT"
    half = (top - bottom) / 2.0
    if half <= 0:
        depth = 0.0
    else:
        depth = min(1.0, max(0.0, abs(price - eq) / half))
    return PremiumDiscount(high=top, low=bottom, equilibrium=eq, zone=zone, depth=depth)


def ote_band(high: float, low: float, direction: Direction) -> tuple[float, float]:
    """Optimal entry band: 61.8%-79% retracement of the leg."""
    span = max(high, low) - min(high, low)
    bottom = min(high, low)
    top = max(high, low)
    if direction == "LONG":
        return bottom + OTE_DEEP * span, bottom + OTE_SHALLOW * span
    return top - OTE_SHALLOW * span, top - OTE_DEEP * span


def in_ote(price: float, high: float, low: float, direction: Direction) -> bool:
    band_low, band_high = ote_band(high, low, direction)
    return band_low <= price <= band_high
