"""Long-lived websocket connection to the platform's event feed."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from enum import Enum
from typing import Any

import aiohttp

from proxy_reconfigurer.config import PlatformSettings, ReconfigureSettings
from proxy_reconfigurer.services.debouncer import ReloadDebouncer
from proxy_reconfigurer.services.events import IgnoredEvent, parse_event
from proxy_reconfigurer.utils.logging import Logger


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"
    ERRORED = "errored"


class ReconnectBackoff:
    """Bounded exponential backoff between connection attempts.

    After a healthy session the next attempt is immediate; consecutive failed attempts (including sessions that
    opened and then dropped before proving healthy) wait ``initial``, ``2 * initial``, ... up to ``ceiling`` seconds.
    """

    def __init__(self, initial: float, ceiling: float) -> None:
        self._initial = initial
        self._ceiling = ceiling
        self.failures = 0

    def succeeded(self) -> None:
        self.failures = 0

    def next_delay(self) -> float:
        delay = 0.0 if self.failures == 0 else min(self._ceiling, self._initial * 2 ** (self.failures - 1))
        self.failures += 1
        return delay


class EventStreamClient:
    """Keeps exactly one connection to the event feed and feeds service events to the debouncer.

    Frames are handled one at a time while holding ``cycle_lock`` so a rebuild that is in progress finishes
    before the next event changes debounce state.
    """

    def __init__(
        self,
        settings: PlatformSettings,
        reconnect: ReconfigureSettings,
        debouncer: ReloadDebouncer,
        on_resync: Callable[[], Awaitable[Any]],
        logger: Logger,
        cycle_lock: asyncio.Lock | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._settings = settings
        self._debouncer = debouncer
        self._on_resync = on_resync
        self._logger = logger
        self._cycle_lock = cycle_lock or asyncio.Lock()
        self._session = session
        self._owns_session = session is None
        self._backoff = ReconnectBackoff(
            reconnect.reconnect_initial_delay_seconds,
            reconnect.reconnect_max_delay_seconds,
        )
        self._stable_after = reconnect.reconnect_stable_seconds
        self._opened_at: float | None = None
        self._received_frame = False
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._stopping = asyncio.Event()
        self.state = ConnectionState.DISCONNECTED

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    async def run(self) -> None:
        """Connect, consume, and reconnect until :meth:`close` is called."""

        while not self._stopping.is_set():
            self.state = ConnectionState.CONNECTING
            try:
                await self._consume()
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                self.state = ConnectionState.ERRORED
                self._logger.warning("stream_connect_failed", extra={"error": str(exc) or type(exc).__name__})
            finally:
                self._ws = None
            if self._session_was_healthy():
                self._backoff.succeeded()

            if self._stopping.is_set():
                self._logger.info("stream_closed")
                break

            delay = self._backoff.next_delay()
            self._logger.info("stream_reconnecting", extra={"delay": delay})
            await self._sleep(delay)

        self.state = ConnectionState.DISCONNECTED

    async def close(self) -> None:
        """Stop reconnecting and close the current connection, if any."""

        self._stopping.set()
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def handle_frame(self, data: str) -> None:
        """Decode one text frame and apply it to the debounce state."""

        event = parse_event(data)
        if isinstance(event, IgnoredEvent):
            if event.reason != "other_kind":
                self._logger.debug("stream_frame_ignored", extra={"reason": event.reason})
            return
        async with self._cycle_lock:
            self._debouncer.observe(event)

    async def _consume(self) -> None:
        session = self._session_instance()
        url = self._settings.resolved_stream_url
        self._logger.info("stream_connecting", extra={"url": url})
        async with session.ws_connect(url, heartbeat=self._settings.ping_interval_seconds, **self._auth()) as ws:
            self._ws = ws
            await self._on_open()
            async for message in ws:
                if message.type == aiohttp.WSMsgType.TEXT:
                    self._received_frame = True
                    await self.handle_frame(message.data)
                elif message.type == aiohttp.WSMsgType.ERROR:
                    self._logger.warning("stream_error", extra={"error": str(ws.exception())})
            self.state = ConnectionState.CLOSED
            if not self._stopping.is_set():
                self._logger.info("stream_connection_lost", extra={"close_code": ws.close_code})

    async def _on_open(self) -> None:
        self.state = ConnectionState.CONNECTED
        self._opened_at = asyncio.get_running_loop().time()
        self._received_frame = False
        self._logger.info("stream_connected")
        # Events may have been missed while we were away; re-derive the topology instead of waiting.
        if self._debouncer.resync():
            await self._on_resync()

    def _session_was_healthy(self) -> bool:
        """Whether the session that just ended delivered a frame or stayed open long enough to count."""

        opened_at, self._opened_at = self._opened_at, None
        if opened_at is None:
            return False
        if self._received_frame:
            return True
        return asyncio.get_running_loop().time() - opened_at >= self._stable_after

    def _auth(self) -> dict[str, Any]:
        token = self._settings.require_auth()
        if self._settings.profile.stream_auth_in_query:
            return {"params": {"auth": token}}
        return {"headers": {"Authorization": token}}

    def _session_instance(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _sleep(self, delay: float) -> None:
        if delay <= 0:
            return
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)


__all__ = ["EventStreamClient", "ConnectionState", "ReconnectBackoff"]
