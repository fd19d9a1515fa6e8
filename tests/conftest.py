from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

import pytest

from proxy_reconfigurer.services.platform_client import Record
from proxy_reconfigurer.utils.diagnostics import PlatformQueryError


class FakeTimer:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeLoop:
    """Deterministic stand-in for ``loop.call_later``; time only moves through :meth:`advance`."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [timer for timer in self.timers if not timer.cancelled]

    def advance(self, seconds: float) -> None:
        self.now += seconds
        while True:
            due = sorted(
                (timer for timer in self.pending if timer.when <= self.now),
                key=lambda timer: timer.when,
            )
            if not due:
                return
            timer = due[0]
            self.timers.remove(timer)
            timer.callback()


class FakeReloader:
    """Records reload requests instead of spawning the proxy's reload command."""

    def __init__(self) -> None:
        self.reloads = 0
        self.subscribers: list[Callable[[int | None], None]] = []

    def subscribe(self, callback: Callable[[int | None], None]) -> None:
        self.subscribers.append(callback)

    def reload(self) -> None:
        self.reloads += 1
        for callback in self.subscribers:
            callback(0)

    async def wait_idle(self) -> None:
        return None


def service_record(
    uuid: str,
    name: str,
    state: str = "Running",
    ports: tuple[str, ...] = ("http",),
    containers: tuple[str, ...] = (),
) -> Record:
    return {
        "uuid": uuid,
        "name": name,
        "state": state,
        "container_ports": [{"port_name": port} for port in ports],
        "containers": [f"/api/app/v1/container/{container}/" for container in containers],
    }


def container_record(
    uuid: str,
    ip: str | None,
    state: str = "Running",
    node: str | None = None,
    **env: str,
) -> Record:
    envvars = [{"key": key, "value": value} for key, value in env.items()]
    if node is not None:
        envvars.append({"key": "DOCKERCLOUD_NODE_FQDN", "value": node})
    return {"uuid": uuid, "state": state, "private_ip": ip, "container_envvars": envvars}


class FakeQuery:
    """In-memory query interface keyed by uuid."""

    def __init__(
        self,
        services: list[Record],
        containers: list[Record],
        nodes: list[Record] | None = None,
    ) -> None:
        self.services = {record["uuid"]: record for record in services}
        self.order = [record["uuid"] for record in services]
        self.containers = {record["uuid"]: record for record in containers}
        self.nodes = nodes or []
        self.calls: list[str] = []
        self.fail_on: str | None = None

    def _record(self, call: str) -> None:
        self.calls.append(call)
        if self.fail_on == call:
            raise PlatformQueryError("PlatformUnreachable", "boom")

    async def list_services(self, filters: Mapping[str, str] | None = None) -> list[Record]:
        self._record("list_services")
        return [{"uuid": uuid, "name": self.services[uuid]["name"]} for uuid in self.order]

    async def get_service(self, uuid: str) -> Record:
        self._record("get_service")
        return self.services[uuid]

    async def get_container(self, uuid: str) -> Record:
        self._record("get_container")
        return self.containers[uuid]

    async def list_nodes(self, filters: Mapping[str, str] | None = None) -> list[Record]:
        self._record("list_nodes")
        return list(self.nodes)


async def drain(rounds: int = 10) -> None:
    """Let tasks spawned by timer callbacks run to completion."""

    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("proxy_reconfigurer.tests")


@pytest.fixture
def fake_loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture
def fake_reloader() -> FakeReloader:
    return FakeReloader()


def pytest_configure(config: Any) -> None:
    logging.getLogger("proxy_reconfigurer").setLevel(logging.DEBUG)
