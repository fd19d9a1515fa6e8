"""Top-level orchestration: startup, stream-driven rebuilds, file edits and shutdown."""

from __future__ import annotations

import asyncio
import shutil
import signal
from collections.abc import Callable
from contextlib import suppress
from typing import Any

import aiohttp

from proxy_reconfigurer.config import Settings
from proxy_reconfigurer.services.config_emitter import ConfigEmitter, ProxyReloader
from proxy_reconfigurer.services.debouncer import ReloadDebouncer, TimerHandle, TimerLoop
from proxy_reconfigurer.services.discovery import DiscoveryModel
from proxy_reconfigurer.services.event_stream import EventStreamClient
from proxy_reconfigurer.services.file_watch import ConfigFileWatcher
from proxy_reconfigurer.services.platform_client import PlatformClient
from proxy_reconfigurer.services.renderer import ConfigRenderer
from proxy_reconfigurer.utils.diagnostics import PlatformQueryError
from proxy_reconfigurer.utils.logging import Logger

_SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ReconfigurationController:
    """Owns the process lifecycle and wires discovery, emitter, debouncer and stream together.

    Rebuild cycles hold ``cycle_lock`` for their whole duration, including the REST calls; the stream client
    takes the same lock per frame, so a cycle delays event handling but never interleaves with it.
    """

    def __init__(
        self,
        settings: Settings,
        discovery: DiscoveryModel,
        emitter: ConfigEmitter,
        logger: Logger,
        loop: TimerLoop | None = None,
        stream_session: aiohttp.ClientSession | None = None,
        watcher_factory: Callable[..., ConfigFileWatcher] = ConfigFileWatcher,
    ) -> None:
        self._settings = settings
        self._discovery = discovery
        self._emitter = emitter
        self._logger = logger
        self._loop = loop
        self.cycle_lock = asyncio.Lock()
        self.debouncer = ReloadDebouncer(
            on_quiet=lambda: self._spawn_cycle("debounce"),
            logger=logger,
            quiet_period=settings.reconfigure.quiet_period_seconds,
            loop=loop,
        )
        self.stream = EventStreamClient(
            settings=settings.platform,
            reconnect=settings.reconfigure,
            debouncer=self.debouncer,
            on_resync=lambda: self.reconfigure("resync"),
            logger=logger,
            cycle_lock=self.cycle_lock,
            session=stream_session,
        )
        self._watcher_factory = watcher_factory
        self._watcher: ConfigFileWatcher | None = None
        self._file_timer: TimerHandle | None = None
        self._retry_timer: TimerHandle | None = None
        self._consecutive_failures = 0
        self._tasks: set[asyncio.Task[Any]] = set()
        self._shutdown = asyncio.Event()
        self.shutting_down = False
        emitter.reloader.subscribe(self._on_reload_exit)

    @classmethod
    def build(cls, settings: Settings, logger: Logger) -> tuple[ReconfigurationController, PlatformClient]:
        """Wire the production collaborators. The caller closes the returned client."""

        platform = PlatformClient(settings.platform, logger)
        discovery = DiscoveryModel(platform, settings.platform.profile.node_env_key, logger)
        emitter = ConfigEmitter(
            render=ConfigRenderer(settings.proxy.template_path),
            reloader=ProxyReloader(settings.proxy.reload_command, logger),
            logger=logger,
        )
        return cls(settings, discovery, emitter, logger), platform

    async def run(self) -> None:
        """Initial cycle, then follow the event stream until a shutdown signal arrives."""

        self._install_signal_handlers()
        self._logger.info(
            "controller_starting",
            extra={
                "mode": self._settings.platform.topology_mode.value,
                "node": self._settings.platform.node_fqdn,
                "config": str(self._settings.proxy.config_path),
            },
        )
        await self.reconfigure("startup")

        self._watcher = self._watcher_factory(
            self._settings.proxy.config_path, self.on_config_file_changed, self._logger
        )
        self._watcher.start()

        stream_task = asyncio.create_task(self.stream.run())
        stream_task.add_done_callback(self._on_stream_done)
        try:
            await self._shutdown.wait()
        finally:
            await self.stream.close()
            done, _ = await asyncio.wait({stream_task}, timeout=10)
            if not done:
                stream_task.cancel()
            await self._cleanup()

    async def reconfigure(self, reason: str) -> bool:
        """Rebuild the topology, render it and reload the proxy. Returns whether a new file was written."""

        async with self.cycle_lock:
            if self.shutting_down:
                return False
            if reason != "retry":
                self._consecutive_failures = 0
            self._logger.info("reconfigure_started", extra={"reason": reason})
            platform = self._settings.platform
            try:
                services = await self._discovery.rebuild(platform.topology_mode, platform.node_fqdn)
            except PlatformQueryError as diagnostic:
                self._logger.error("rebuild_failed", extra={"reason": reason, **diagnostic.to_extra()})
                if reason == "startup":
                    self._install_fallback()
                self._schedule_retry()
                return False

            self._consecutive_failures = 0
            self._cancel_retry()
            return self._emitter.emit(services, self._settings.proxy.config_path)

    def on_config_file_changed(self) -> None:
        """Arm (or re-arm) the reload-only timer after an edit of the configuration file."""

        if self.shutting_down:
            return
        if self._file_timer is not None:
            self._file_timer.cancel()
        self._file_timer = self._timer_loop().call_later(
            self._settings.reconfigure.file_change_quiet_seconds, self._reload_after_edit
        )

    def request_shutdown(self, signame: str = "SIGTERM") -> None:
        """Begin a clean shutdown. Repeated signals while already shutting down are ignored."""

        if self.shutting_down:
            return
        self.shutting_down = True
        self._logger.info("shutdown_requested", extra={"signal": signame})
        self._shutdown.set()

    def _reload_after_edit(self) -> None:
        self._file_timer = None
        self._logger.info("config_file_changed")
        self._emitter.reload()

    def _spawn_cycle(self, reason: str) -> None:
        task = asyncio.get_running_loop().create_task(self.reconfigure(reason))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _schedule_retry(self) -> None:
        """Keep exactly one retry pending until a rebuild succeeds."""

        if self._retry_timer is not None:
            return
        self._consecutive_failures += 1
        delay = self._settings.reconfigure.retry_delay_seconds
        extra = {"delay": delay, "attempt": self._consecutive_failures}
        if self._consecutive_failures > self._settings.reconfigure.retry_alert_threshold:
            self._logger.error("rebuild_still_failing", extra=extra)
        else:
            self._logger.info("rebuild_retry_scheduled", extra=extra)
        self._retry_timer = self._timer_loop().call_later(delay, self._fire_retry)

    def _fire_retry(self) -> None:
        self._retry_timer = None
        self._spawn_cycle("retry")

    def _cancel_retry(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    def _install_fallback(self) -> None:
        fallback = self._settings.proxy.fallback_config_path
        destination = self._settings.proxy.config_path
        if fallback is None or destination.exists():
            return
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(fallback, destination)
        except OSError as exc:
            self._logger.error("fallback_config_failed", extra={"path": str(fallback), "error": str(exc)})
            return
        self._logger.warning("fallback_config_installed", extra={"path": str(fallback)})
        self._emitter.reload()

    def _on_stream_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None and self.shutting_down:
            return
        self._logger.error("stream_task_failed", exc_info=exc, extra={"error": repr(exc)})
        # No event feed means no further reconfiguration; exit and let the supervisor restart the process.
        self.request_shutdown("stream_failed")

    def _on_reload_exit(self, returncode: int | None) -> None:
        if returncode == 0:
            self._logger.info("proxy_reloaded")
        else:
            self._logger.warning("proxy_reload_failed", extra={"returncode": returncode})

    def _timer_loop(self) -> TimerLoop:
        return self._loop or asyncio.get_running_loop()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in _SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
            except (NotImplementedError, RuntimeError):  # pragma: no cover - non-main thread or Windows
                self._logger.debug("signal_handler_unavailable", extra={"signal": sig.name})

    async def _cleanup(self) -> None:
        self.debouncer.reset()
        self._cancel_retry()
        if self._file_timer is not None:
            self._file_timer.cancel()
            self._file_timer = None
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._emitter.reloader.wait_idle()
        with suppress(NotImplementedError, RuntimeError):
            loop = asyncio.get_running_loop()
            for sig in _SHUTDOWN_SIGNALS:
                loop.remove_signal_handler(sig)
        self._logger.info("controller_stopped")


__all__ = ["ReconfigurationController"]
