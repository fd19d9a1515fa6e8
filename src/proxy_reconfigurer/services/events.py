"""Decoding of platform stream frames into lifecycle events."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

TRANSITIONAL_STATES = frozenset({"Scaling", "Redeploying", "Stopping", "Starting", "Terminating"})
SETTLED_STATES = frozenset({"Running", "Stopped", "Not running", "Terminated"})


class Transition(str, Enum):
    """How a lifecycle state affects the debounce state machine."""

    TRANSITIONAL = "transitional"
    SETTLED = "settled"
    OTHER = "other"


def classify(state: str) -> Transition:
    if state in TRANSITIONAL_STATES:
        return Transition.TRANSITIONAL
    if state in SETTLED_STATES:
        return Transition.SETTLED
    return Transition.OTHER


@dataclass(frozen=True, slots=True)
class ServiceLifecycleEvent:
    """A service changed lifecycle state."""

    uuid: str
    state: str

    @property
    def transition(self) -> Transition:
        return classify(self.state)


@dataclass(frozen=True, slots=True)
class IgnoredEvent:
    """Anything that is not a well-formed service lifecycle event."""

    reason: str
    kind: str | None = None


StreamEvent = ServiceLifecycleEvent | IgnoredEvent


def parse_event(frame: str | bytes | dict[str, Any]) -> StreamEvent:
    """Decode one stream frame. Never raises; unusable frames become :class:`IgnoredEvent`."""

    if isinstance(frame, dict):
        data: Any = frame
    else:
        try:
            data = json.loads(frame)
        except (TypeError, ValueError):
            return IgnoredEvent("invalid_json")

    if not isinstance(data, dict):
        return IgnoredEvent("not_an_object")

    kind = data.get("type")
    if kind != "service":
        return IgnoredEvent("other_kind", kind=str(kind) if kind is not None else None)

    uuid, state = data.get("uuid"), data.get("state")
    if not isinstance(uuid, str) or not uuid or not isinstance(state, str):
        return IgnoredEvent("missing_fields", kind=kind)
    return ServiceLifecycleEvent(uuid=uuid, state=state)


__all__ = [
    "Transition",
    "classify",
    "ServiceLifecycleEvent",
    "IgnoredEvent",
    "StreamEvent",
    "parse_event",
    "TRANSITIONAL_STATES",
    "SETTLED_STATES",
]
