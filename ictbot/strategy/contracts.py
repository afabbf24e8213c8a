from __future__ import annotations

from enum import Enum
from typing import Literal, Mapping, TypeVar

Direction = Literal["LONG", "SHORT"]
Trend = Literal["BULLISH", "BEARISH", "TRANSITION", "UNDEFINED"]
BiasDirection = Literal["BULLISH", "BEARISH", "NO_TRADE"]
GapType = Literal["BULLISH", "BEARISH"]
Quality = Literal["HIGH", "MEDIUM", "LOW"]

StateT = TypeVar("StateT", bound=Enum)
EventT = TypeVar("EventT", bound=Enum)


class IllegalTransitionError(ValueError):
    def __init__(self, entity: str, state: Enum, event: Enum):
        super().__init__(f"{entity}: no transition from {state.value} on {event.value}")
        self.entity = entity
        self.state = state
        self.event = event


def apply_transition(
    table: Mapping[tuple[StateT, EventT], StateT],
    state: StateT,
    event: EventT,
    *,
    entity: str,
) -> StateT:
    try:
        return table[(state, event)]
    except KeyError:
        raise IllegalTransitionError(entity, state, event) from None


def direction_for_bias(bias: BiasDirection) -> Direction | None:
    if bias == "BULLISH":
        return "LONG"
    if bias == "BEARISH":
        return "SHORT"
    return None
