"""Read-only client for the orchestration platform's REST API."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import urljoin

import httpx

from proxy_reconfigurer.config import PlatformSettings
from proxy_reconfigurer.utils.diagnostics import PlatformQueryError
from proxy_reconfigurer.utils.logging import Logger

Record = dict[str, Any]


class PlatformClient:
    """Lists services, containers and nodes.

    Every failure (transport, HTTP status, undecodable body) is raised as :class:`PlatformQueryError` so a
    rebuild can abort as a unit.
    """

    def __init__(
        self,
        settings: PlatformSettings,
        logger: Logger,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._logger = logger
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _client_instance(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._settings.resolved_api_url + "/",
                headers={
                    "Authorization": self._settings.require_auth(),
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
                timeout=self._settings.http_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def list_services(self, filters: Mapping[str, str] | None = None) -> list[Record]:
        return await self._list("service/", filters)

    async def get_service(self, uuid: str) -> Record:
        return await self._get(f"service/{uuid}/")

    async def get_container(self, uuid: str) -> Record:
        return await self._get(f"container/{uuid}/")

    async def list_nodes(self, filters: Mapping[str, str] | None = None) -> list[Record]:
        return await self._list("node/", filters)

    async def _list(self, path: str, filters: Mapping[str, str] | None) -> list[Record]:
        """Collect ``objects`` across every page, following ``meta.next`` links."""

        client = await self._client_instance()
        objects: list[Record] = []
        url: str | None = str(client.base_url.join(path))
        params: Mapping[str, str] | None = filters
        while url:
            payload = await self._get(url, params)
            objects.extend(payload.get("objects") or [])
            url = _next_page(url, payload)
            params = None  # the next link already carries the query string
        return objects

    async def _get(self, url: str, params: Mapping[str, str] | None = None) -> Record:
        client = await self._client_instance()
        try:
            response = await client.get(url, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            self._logger.warning(
                "platform_query_rejected",
                extra={"url": str(exc.request.url), "status": exc.response.status_code},
            )
            raise PlatformQueryError(
                "PlatformQueryRejected",
                f"Platform API answered {exc.response.status_code} for {exc.request.url}.",
                detail=exc.response.text[:200],
            ) from exc
        except httpx.HTTPError as exc:
            self._logger.warning("platform_query_failed", extra={"url": url, "error": str(exc)})
            raise PlatformQueryError(
                "PlatformUnreachable",
                "Platform API could not be reached.",
                detail=str(exc),
            ) from exc
        except ValueError as exc:
            raise PlatformQueryError(
                "PlatformInvalidPayload",
                f"Platform API returned a body that is not JSON for {url}.",
                detail=str(exc),
            ) from exc

        if not isinstance(payload, dict):
            raise PlatformQueryError(
                "PlatformInvalidPayload",
                f"Platform API returned an unexpected document for {url}.",
            )
        return payload


def _next_page(current: str, payload: Mapping[str, Any]) -> str | None:
    meta = payload.get("meta")
    if not isinstance(meta, Mapping):
        return None
    next_url = meta.get("next")
    if not next_url:
        return None
    return urljoin(current, str(next_url))


__all__ = ["PlatformClient", "Record"]
