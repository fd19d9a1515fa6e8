"""Discovery of routable services from the platform's list API."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from proxy_reconfigurer.config import TopologyMode
from proxy_reconfigurer.services.models import Container, Service, TopologyFilter, resource_id
from proxy_reconfigurer.utils.logging import Logger


class QueryInterface(Protocol):
    """The subset of the platform API that discovery depends on."""

    async def list_services(self, filters: Mapping[str, str] | None = None) -> list[dict[str, Any]]: ...

    async def get_service(self, uuid: str) -> dict[str, Any]: ...

    async def get_container(self, uuid: str) -> dict[str, Any]: ...

    async def list_nodes(self, filters: Mapping[str, str] | None = None) -> list[dict[str, Any]]: ...


class DiscoveryModel:
    """Rebuilds the list of services the proxy should route to.

    A rebuild either completes or raises; callers never see a partial list. Any
    :class:`~proxy_reconfigurer.utils.diagnostics.PlatformQueryError` from the query interface propagates.
    """

    def __init__(self, query: QueryInterface, node_env_key: str, logger: Logger) -> None:
        self._query = query
        self._node_env_key = node_env_key
        self._logger = logger

    async def rebuild(self, mode: TopologyMode, node: str | None = None) -> list[Service]:
        """Return routable services in the order the platform lists them."""

        topology = TopologyFilter(mode=mode, node=node, region_map=await self._region_map(mode))
        services: list[Service] = []
        for summary in await self._query.list_services():
            service = await self._expand(summary, topology)
            if service is not None:
                services.append(service)
        self._logger.debug("discovery_rebuilt", extra={"mode": mode.value, "services": len(services)})
        return services

    async def _expand(self, summary: Mapping[str, Any], topology: TopologyFilter) -> Service | None:
        # List entries are summaries; the detail record carries ports and container references.
        uuid = summary.get("uuid")
        if not uuid:
            self._logger.debug("service_summary_skipped", extra={"service": summary.get("name")})
            return None
        record = await self._query.get_service(str(uuid))
        shell = Service.from_record(record)
        if not (shell.http and shell.running):
            return None

        containers = await self._containers(shell.container_refs, topology)
        service = Service.from_record(record, containers)
        return service if service.routable else None

    async def _containers(self, refs: Sequence[str], topology: TopologyFilter) -> list[Container]:
        containers: list[Container] = []
        for ref in refs:
            record = await self._query.get_container(resource_id(ref))
            container = Container.from_record(record, self._node_env_key)
            if topology.includes(container):
                containers.append(container)
        return containers

    async def _region_map(self, mode: TopologyMode) -> dict[str, str | None]:
        """Map node FQDN to region. Fetched once per rebuild and only for region mode."""

        if mode is not TopologyMode.REGION:
            return {}
        region_map: dict[str, str | None] = {}
        for node in await self._query.list_nodes():
            fqdn = node.get("external_fqdn")
            if fqdn:
                region_map[str(fqdn)] = node.get("region")
        return region_map


__all__ = ["DiscoveryModel", "QueryInterface"]
