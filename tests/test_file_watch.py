from __future__ import annotations

import asyncio

from watchdog.events import FileCreatedEvent, FileModifiedEvent, FileMovedEvent

from proxy_reconfigurer.services.config_emitter import write_atomic
from proxy_reconfigurer.services.file_watch import ConfigFileWatcher, _ConfigFileHandler


def test_only_events_for_the_watched_file_are_forwarded(tmp_path, logger):
    target = tmp_path / "default.conf"
    watcher = ConfigFileWatcher(target, lambda: None, logger)
    notified: list[bool] = []
    watcher.notify_threadsafe = lambda: notified.append(True)
    handler = _ConfigFileHandler(watcher)

    handler.dispatch(FileModifiedEvent(str(tmp_path / "other.conf")))
    assert notified == []

    handler.dispatch(FileMovedEvent(str(tmp_path / ".default.conf.tmp"), str(target)))
    handler.dispatch(FileCreatedEvent(str(target)))
    handler.dispatch(FileModifiedEvent(str(target)))
    assert len(notified) == 3


async def test_atomic_replacement_notifies_on_the_event_loop(tmp_path, logger):
    target = tmp_path / "conf.d" / "default.conf"
    changed = asyncio.Event()
    watcher = ConfigFileWatcher(target, changed.set, logger)

    watcher.start()
    try:
        assert watcher.running
        # The observer thread sets up its watch asynchronously; keep writing until it reports.
        for attempt in range(20):
            write_atomic(target, f"# revision {attempt}\n")
            try:
                await asyncio.wait_for(changed.wait(), timeout=0.5)
                break
            except asyncio.TimeoutError:
                continue
    finally:
        watcher.stop()

    assert changed.is_set()
    assert not watcher.running


def test_stop_without_start_is_a_no_op(tmp_path, logger):
    watcher = ConfigFileWatcher(tmp_path / "default.conf", lambda: None, logger)

    watcher.stop()
    watcher.notify_threadsafe()

    assert not watcher.running
