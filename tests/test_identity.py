from __future__ import annotations

import json

import httpx
import pytest

from trips_web.errors import (
    MalformedUpstreamResponse,
    UpstreamStatusError,
    UpstreamUnavailable,
    VehicleQueryFailed,
)
from trips_web.identity import PAGE_SIZE, IdentityResolver

from .conftest import IDENTITY_URL


def vehicles_payload(*nodes: dict) -> dict:
    return {"data": {"vehicles": {"nodes": list(nodes)}}}


NODE_A = {
    "tokenId": 17,
    "earnings": {"totalTokens": "12.5"},
    "definition": {"make": "Ford", "model": "Bronco", "year": 2022},
    "aftermarketDevice": {"address": "0xdev", "serial": "S1", "manufacturer": {"name": "AutoPi"}},
}
NODE_B = {"tokenId": 18, "earnings": None, "definition": None, "aftermarketDevice": None}


@pytest.fixture
def resolver(upstream) -> IdentityResolver:
    return IdentityResolver(upstream.client(), IDENTITY_URL)


@pytest.mark.asyncio
async def test_list_vehicles_projects_nodes(upstream, resolver) -> None:
    upstream.add_json("POST", IDENTITY_URL, vehicles_payload(NODE_A, NODE_B))

    vehicles = await resolver.list_vehicles("0xABC")

    assert [v.model_dump() for v in vehicles] == [
        {"id": 17, "make": "Ford", "model": "Bronco", "year": 2022},
        {"id": 18, "make": None, "model": None, "year": None},
    ]


@pytest.mark.asyncio
async def test_query_is_parameterised_by_owner(upstream, resolver) -> None:
    upstream.add_json("POST", IDENTITY_URL, vehicles_payload())

    await resolver.list_vehicles('0xABC" } ) { evil')

    body = json.loads(upstream.calls[0].content)
    assert body["variables"] == {"owner": '0xABC" } ) { evil', "first": PAGE_SIZE}
    assert "0xABC" not in body["query"]
    for field in ("tokenId", "totalTokens", "definition", "aftermarketDevice", "manufacturer"):
        assert field in body["query"]


@pytest.mark.asyncio
async def test_non_success_status_is_aggregated(upstream, resolver) -> None:
    upstream.add_json("POST", IDENTITY_URL, {"message": "down"}, status_code=502)

    with pytest.raises(VehicleQueryFailed) as exc_info:
        await resolver.list_vehicles("0xABC")
    assert isinstance(exc_info.value.__cause__, UpstreamStatusError)


@pytest.mark.asyncio
async def test_transport_failure_is_aggregated(upstream, resolver) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    upstream.add("POST", IDENTITY_URL, refuse)

    with pytest.raises(VehicleQueryFailed) as exc_info:
        await resolver.list_vehicles("0xABC")
    assert isinstance(exc_info.value.__cause__, UpstreamUnavailable)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"data": {"vehicles": {}}}),
        httpx.Response(200, json={"data": {"vehicles": {"nodes": [{"definition": {}}]}}}),
    ],
)
async def test_undecodable_or_mismatched_body_is_aggregated(upstream, resolver, response) -> None:
    upstream.add("POST", IDENTITY_URL, lambda request: response)

    with pytest.raises(VehicleQueryFailed) as exc_info:
        await resolver.list_vehicles("0xABC")
    assert isinstance(exc_info.value.__cause__, MalformedUpstreamResponse)


@pytest.mark.asyncio
async def test_graphql_errors_without_data(upstream, resolver) -> None:
    upstream.add_json("POST", IDENTITY_URL, {"errors": [{"message": "bad owner"}], "data": None})

    with pytest.raises(VehicleQueryFailed):
        await resolver.list_vehicles("0xABC")
