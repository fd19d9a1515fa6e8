from __future__ import annotations

import httpx
import pytest

from proxy_reconfigurer.config import PlatformFlavor, PlatformSettings
from proxy_reconfigurer.services.platform_client import PlatformClient
from proxy_reconfigurer.utils.diagnostics import CredentialMissingError, PlatformQueryError


def _client(handler, logger, **overrides) -> PlatformClient:
    settings = PlatformSettings(auth="ApiKey user:secret", **overrides)
    return PlatformClient(settings, logger, transport=httpx.MockTransport(handler))


async def test_list_services_follows_pagination_and_sends_credentials(logger):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.params.get("offset") == "1":
            return httpx.Response(200, json={"meta": {"next": None}, "objects": [{"uuid": "b"}]})
        return httpx.Response(
            200,
            json={"meta": {"next": "/api/app/v1/service/?limit=1&offset=1"}, "objects": [{"uuid": "a"}]},
        )

    client = _client(handler, logger)
    try:
        services = await client.list_services({"limit": "1"})
    finally:
        await client.aclose()

    assert [record["uuid"] for record in services] == ["a", "b"]
    assert [str(request.url) for request in seen] == [
        "https://cloud.docker.com/api/app/v1/service/?limit=1",
        "https://cloud.docker.com/api/app/v1/service/?limit=1&offset=1",
    ]
    assert all(request.headers["Authorization"] == "ApiKey user:secret" for request in seen)
    assert seen[0].headers["Accept"] == "application/json"


async def test_detail_endpoints_use_resource_paths(logger):
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json={"uuid": request.url.path.rstrip("/").rsplit("/", 1)[-1]})

    client = _client(handler, logger, flavor=PlatformFlavor.TUTUM)
    try:
        service = await client.get_service("s1")
        container = await client.get_container("c1")
    finally:
        await client.aclose()

    assert service["uuid"] == "s1"
    assert container["uuid"] == "c1"
    assert paths == ["/api/v1/service/s1/", "/api/v1/container/c1/"]


async def test_rejected_request_raises_query_error(logger):
    client = _client(lambda request: httpx.Response(401, text="unauthorized"), logger)
    try:
        with pytest.raises(PlatformQueryError) as excinfo:
            await client.list_nodes()
    finally:
        await client.aclose()

    assert excinfo.value.code == "PlatformQueryRejected"
    assert excinfo.value.detail == "unauthorized"


async def test_transport_failure_raises_query_error(logger):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler, logger)
    try:
        with pytest.raises(PlatformQueryError) as excinfo:
            await client.get_service("s1")
    finally:
        await client.aclose()

    assert excinfo.value.code == "PlatformUnreachable"


async def test_non_json_body_raises_query_error(logger):
    client = _client(lambda request: httpx.Response(200, text="<html>maintenance</html>"), logger)
    try:
        with pytest.raises(PlatformQueryError) as excinfo:
            await client.get_container("c1")
    finally:
        await client.aclose()

    assert excinfo.value.code == "PlatformInvalidPayload"


async def test_missing_credential_is_refused_before_any_request(logger):
    client = PlatformClient(PlatformSettings(auth=None), logger, transport=httpx.MockTransport(lambda r: None))

    with pytest.raises(CredentialMissingError):
        await client.list_services()
