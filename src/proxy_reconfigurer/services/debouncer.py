"""Debounce state machine that decides when a reconfiguration is safe."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from proxy_reconfigurer.services.events import ServiceLifecycleEvent, Transition
from proxy_reconfigurer.utils.logging import Logger


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class TimerLoop(Protocol):
    """The piece of :class:`asyncio.AbstractEventLoop` the debouncer needs."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


@dataclass(slots=True)
class DebounceState:
    """Services mid-transition, whether one of them settled, and the single pending timer."""

    transitioning: deque[str] = field(default_factory=deque)
    settled: bool = False
    timer: TimerHandle | None = None

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class ReloadDebouncer:
    """Coalesces bursts of lifecycle events into a single reconfiguration.

    Transitional events cancel any pending timer and record the service as in transition. Settled events only
    count when something is in transition; each one releases the oldest recorded transition (FIFO, not matched
    by identifier). Once nothing is in transition and a settle was seen, a quiet-period timer is armed; its
    callback runs ``on_quiet`` unless a newer event cancels it first.
    """

    def __init__(
        self,
        on_quiet: Callable[[], None],
        logger: Logger,
        quiet_period: float = 5.0,
        loop: TimerLoop | None = None,
    ) -> None:
        self._on_quiet = on_quiet
        self._logger = logger
        self._quiet_period = quiet_period
        self._loop = loop
        self.state = DebounceState()

    @property
    def in_transition(self) -> bool:
        return bool(self.state.transitioning)

    @property
    def armed(self) -> bool:
        return self.state.timer is not None

    def observe(self, event: ServiceLifecycleEvent) -> None:
        """Feed one service lifecycle event through the state machine."""

        state = self.state
        transition = event.transition
        if transition is Transition.TRANSITIONAL:
            self._logger.info("service_transitioning", extra={"uuid": event.uuid, "state": event.state})
            state.cancel_timer()
            state.transitioning.append(event.uuid)
        elif transition is Transition.SETTLED and state.transitioning:
            self._logger.info("service_settled", extra={"uuid": event.uuid, "state": event.state})
            state.transitioning.popleft()
            state.cancel_timer()
            state.settled = True
        else:
            return

        if state.settled and not state.transitioning:
            self._logger.info("services_changed", extra={"quiet_period": self._quiet_period})
            state.settled = False
            self._arm()

    def resync(self) -> bool:
        """Drop all debounce state if a transition was being tracked.

        Called when the stream (re)connects. Returns ``True`` when events may have been missed and the caller
        must reconfigure immediately.
        """

        if not self.state.transitioning:
            return False
        self._logger.info("debounce_resync", extra={"dropped": len(self.state.transitioning)})
        self.reset()
        return True

    def reset(self) -> None:
        self.state.cancel_timer()
        self.state.transitioning.clear()
        self.state.settled = False

    def _arm(self) -> None:
        self.state.cancel_timer()
        loop = self._loop or asyncio.get_running_loop()
        self.state.timer = loop.call_later(self._quiet_period, self._fire)

    def _fire(self) -> None:
        self.state.timer = None
        self._on_quiet()


__all__ = ["ReloadDebouncer", "DebounceState", "TimerLoop", "TimerHandle"]
