"""Domain models for discovered services and their containers."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from proxy_reconfigurer.config import TopologyMode

HTTP_PORT_ROLES = frozenset({"http", "https"})
RUNNING_SERVICE_STATES = frozenset({"Running", "Partly running"})
ELIGIBLE_CONTAINER_STATES = frozenset({"Starting", "Running"})

DEFAULT_VIRTUAL_PORT = "80"
DEFAULT_CLIENT_MAX_BODY_SIZE = "1m"

_FALSE_FLAGS = frozenset({"", "0", "false", "no", "off"})


def resource_id(uri: str) -> str:
    """Return the identifier at the end of a resource URI like ``/api/app/v1/container/<uuid>/``."""

    return uri.rstrip("/").rsplit("/", 1)[-1]


def _env_map(record: Mapping[str, Any]) -> dict[str, str | None]:
    envvars = record.get("container_envvars") or []
    return {str(entry.get("key")): entry.get("value") for entry in envvars if isinstance(entry, Mapping)}


@dataclass(frozen=True, slots=True)
class Container:
    """A single container instance with the routing hints declared in its environment."""

    id: str
    state: str
    private_ip: str | None = None
    virtual_host: str | None = None
    virtual_port: str = DEFAULT_VIRTUAL_PORT
    force_ssl: bool = False
    node: str | None = None
    client_max_body_size: str = DEFAULT_CLIENT_MAX_BODY_SIZE

    @classmethod
    def from_record(cls, record: Mapping[str, Any], node_env_key: str) -> Container:
        """Build a container from a platform API record."""

        env = _env_map(record)
        force_ssl = env.get("FORCE_SSL")
        return cls(
            id=str(record.get("uuid", "")),
            state=str(record.get("state", "")),
            private_ip=record.get("private_ip") or None,
            virtual_host=env.get("VIRTUAL_HOST") or None,
            virtual_port=env.get("VIRTUAL_PORT") or DEFAULT_VIRTUAL_PORT,
            force_ssl=force_ssl is not None and str(force_ssl).strip().lower() not in _FALSE_FLAGS,
            node=env.get(node_env_key) or None,
            client_max_body_size=env.get("NGINX_CLIENT_MAX_BODY_SIZE") or DEFAULT_CLIENT_MAX_BODY_SIZE,
        )

    @property
    def eligible(self) -> bool:
        """Whether the container may receive traffic: starting or running, with an address to route to."""

        return self.state in ELIGIBLE_CONTAINER_STATES and self.private_ip is not None

    @property
    def address(self) -> str:
        return f"{self.private_ip}:{self.virtual_port}"


@dataclass(frozen=True, slots=True)
class TopologyFilter:
    """Decides which containers this proxy instance may route to."""

    mode: TopologyMode = TopologyMode.NONE
    node: str | None = None
    # node fqdn -> region; only populated for region mode.
    region_map: Mapping[str, str | None] = field(default_factory=dict)

    def includes(self, container: Container) -> bool:
        if self.mode is TopologyMode.NODE:
            return container.node == self.node
        if self.mode is TopologyMode.REGION:
            # Nodes missing from the map (and own nodes) resolve to None and share that "region".
            return self.region_map.get(self.node or "") == self.region_map.get(container.node or "")
        return True


@dataclass(frozen=True, slots=True)
class Service:
    """A service as discovered during one rebuild. Superseded, never updated in place."""

    id: str
    name: str
    state: str
    port_roles: tuple[str, ...] = field(default_factory=tuple)
    container_refs: tuple[str, ...] = field(default_factory=tuple)
    containers: tuple[Container, ...] = field(default_factory=tuple)

    @classmethod
    def from_record(cls, record: Mapping[str, Any], containers: Sequence[Container] = ()) -> Service:
        ports = record.get("container_ports") or []
        return cls(
            id=str(record.get("uuid", "")),
            name=str(record.get("name", "")),
            state=str(record.get("state", "")),
            port_roles=tuple(str(port.get("port_name")) for port in ports if isinstance(port, Mapping)),
            container_refs=tuple(str(ref) for ref in record.get("containers") or []),
            containers=tuple(containers),
        )

    @property
    def http(self) -> bool:
        return bool(HTTP_PORT_ROLES.intersection(self.port_roles))

    @property
    def running(self) -> bool:
        return self.state in RUNNING_SERVICE_STATES

    @property
    def eligible_containers(self) -> tuple[Container, ...]:
        return tuple(container for container in self.containers if container.eligible)

    @property
    def routable(self) -> bool:
        """HTTP capable, running, and backed by at least one eligible container."""

        return self.http and self.running and bool(self.eligible_containers)

    @property
    def host(self) -> str | None:
        eligible = self.eligible_containers
        return eligible[0].virtual_host if eligible else None

    @property
    def force_ssl(self) -> bool:
        eligible = self.eligible_containers
        return eligible[0].force_ssl if eligible else False

    @property
    def client_max_body_size(self) -> str:
        eligible = self.eligible_containers
        return eligible[0].client_max_body_size if eligible else DEFAULT_CLIENT_MAX_BODY_SIZE

    @property
    def container_ips(self) -> list[str]:
        """Sorted private addresses of the eligible containers."""

        return sorted(container.private_ip for container in self.eligible_containers if container.private_ip)

    @property
    def addresses(self) -> list[str]:
        """Sorted ``ip:port`` upstream members; empty unless the service is routable."""

        if not self.routable:
            return []
        return sorted(container.address for container in self.eligible_containers)


__all__ = [
    "Container",
    "Service",
    "TopologyFilter",
    "resource_id",
    "HTTP_PORT_ROLES",
    "RUNNING_SERVICE_STATES",
    "ELIGIBLE_CONTAINER_STATES",
]
