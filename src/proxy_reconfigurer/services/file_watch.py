"""Watches the rendered configuration file for edits."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from proxy_reconfigurer.utils.logging import Logger


def _as_str(path: str | bytes) -> str:
    return path if isinstance(path, str) else os.fsdecode(path)


class _ConfigFileHandler(FileSystemEventHandler):
    """Forwards events that touch the watched file to the event loop."""

    def __init__(self, watcher: ConfigFileWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._forward(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Atomic replacement shows up as a rename onto the watched path.
        self._forward(event.dest_path)

    def _forward(self, raw_path: str | bytes) -> None:
        if os.path.abspath(_as_str(raw_path)) == self._watcher.path_str:
            self._watcher.notify_threadsafe()


class ConfigFileWatcher:
    """Calls ``on_change`` on the event loop whenever the configuration file changes.

    watchdog delivers events on its own thread; they are handed to the loop with ``call_soon_threadsafe`` so
    ``on_change`` always runs on the loop thread. The parent directory is watched because atomic replacement
    swaps the file's inode.
    """

    def __init__(self, path: Path, on_change: Callable[[], None], logger: Logger) -> None:
        self._path = path
        self.path_str = os.path.abspath(path)
        self._on_change = on_change
        self._logger = logger
        self._observer: Observer | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        self._loop = asyncio.get_running_loop()
        directory = os.path.dirname(self.path_str)
        os.makedirs(directory, exist_ok=True)
        observer = Observer()
        observer.schedule(_ConfigFileHandler(self), directory, recursive=False)
        observer.daemon = True
        observer.start()
        self._observer = observer
        self._logger.info("config_watch_started", extra={"path": self.path_str})

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None
        self._logger.info("config_watch_stopped", extra={"path": self.path_str})

    def notify_threadsafe(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._on_change)


__all__ = ["ConfigFileWatcher"]
