"""Writes rendered proxy configuration to disk and asks the proxy to reload it."""

from __future__ import annotations

import asyncio
import os
import shlex
import tempfile
from collections.abc import Callable, Sequence
from pathlib import Path

from proxy_reconfigurer.services.models import Service
from proxy_reconfigurer.utils.diagnostics import RenderError
from proxy_reconfigurer.utils.logging import Logger

RenderFunction = Callable[[Sequence[Service]], str]
ReloadCallback = Callable[[int | None], None]


class ProxyReloader:
    """Runs the proxy's reload command without waiting for it.

    The exit status is collected by a background task and handed to every subscriber; ``None`` means the
    command could not be started at all.
    """

    def __init__(self, command: str, logger: Logger) -> None:
        self._argv = shlex.split(command)
        self._logger = logger
        self._subscribers: list[ReloadCallback] = []
        self._pending: set[asyncio.Task[int | None]] = set()

    def subscribe(self, callback: ReloadCallback) -> None:
        self._subscribers.append(callback)

    def reload(self) -> asyncio.Task[int | None]:
        """Start the reload command and return the task that will report its exit status."""

        self._logger.info("proxy_reload_requested", extra={"command": " ".join(self._argv)})
        task = asyncio.get_running_loop().create_task(self._run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for every started reload to finish. Used during shutdown and by tests."""

        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _run(self) -> int | None:
        try:
            process = await asyncio.create_subprocess_exec(
                *self._argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            self._logger.error("proxy_reload_spawn_failed", extra={"error": str(exc)})
            returncode = None
        else:
            _, stderr = await process.communicate()
            returncode = process.returncode
            if returncode != 0:
                self._logger.warning(
                    "proxy_reload_stderr",
                    extra={"stderr": stderr.decode(errors="replace").strip()},
                )
        for callback in self._subscribers:
            callback(returncode)
        return returncode


class ConfigEmitter:
    """Renders services, replaces the configuration file atomically, then triggers a reload."""

    def __init__(self, render: RenderFunction, reloader: ProxyReloader, logger: Logger) -> None:
        self._render = render
        self._reloader = reloader
        self._logger = logger

    def emit(self, services: Sequence[Service], destination: Path) -> bool:
        """Write the configuration for ``services`` to ``destination``.

        Returns ``False`` when rendering or writing failed; the file on disk is then left untouched and no
        reload is issued.
        """

        for service in services:
            self._logger.info(
                "service_rendered",
                extra={"service": service.name, "addresses": service.addresses},
            )

        try:
            text = self._render(services)
        except RenderError as diagnostic:
            self._logger.error("config_render_failed", extra=diagnostic.to_extra())
            return False
        except Exception as exc:
            self._logger.exception("config_render_failed", extra={"error": repr(exc)})
            return False

        try:
            write_atomic(destination, text)
        except OSError as exc:
            self._logger.error(
                "config_write_failed",
                extra={"path": str(destination), "error": str(exc)},
            )
            return False

        self._logger.info("config_written", extra={"path": str(destination), "services": len(services)})
        self.reload()
        return True

    @property
    def reloader(self) -> ProxyReloader:
        return self._reloader

    def reload(self) -> asyncio.Task[int | None]:
        return self._reloader.reload()


def write_atomic(destination: Path, text: str) -> None:
    """Replace ``destination`` with ``text`` so readers never observe a half-written file."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".tmp", dir=destination.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, destination)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


__all__ = ["ConfigEmitter", "ProxyReloader", "RenderFunction", "write_atomic"]
