import asyncio

import pytest

from xdsclient.discovery import (
    CLUSTER_TYPE,
    LISTENER_TYPE,
    DiscoveryRequest,
    DiscoveryResponse,
    GrpcStatus,
    send_discovery_req,
)


@pytest.mark.asyncio
@pytest.mark.parametrize("error_message", ["Boo!", None])
async def test_send_discovery_request(error_message):
    queue = asyncio.Queue(maxsize=10)
    await send_discovery_req(
        CLUSTER_TYPE,
        "101",
        "nonce-101",
        error_message,
        ["resource-1", "resource-2"],
        queue,
    )
    result = await asyncio.wait_for(queue.get(), timeout=5)
    expected = DiscoveryRequest(
        version_info="101",
        response_nonce="nonce-101",
        type_url=CLUSTER_TYPE,
        resource_names=["resource-1", "resource-2"],
        node=None,
        error_detail=(
            GrpcStatus(code=2, message=error_message, details=[])
            if error_message is not None
            else None
        ),
    )
    assert result == expected


@pytest.mark.asyncio
async def test_send_discovery_request_in_sequence():
    queue = asyncio.Queue(maxsize=10)
    await send_discovery_req(CLUSTER_TYPE, "1", "n1", None, [], queue)
    await send_discovery_req(LISTENER_TYPE, "2", "n2", "bad", [], queue)
    first = queue.get_nowait()
    second = queue.get_nowait()
    assert (first.type_url, first.version_info, first.error_detail) == (
        CLUSTER_TYPE,
        "1",
        None,
    )
    assert second.type_url == LISTENER_TYPE
    assert second.error_detail.message == "bad"
    assert second.error_detail.code == 2


@pytest.mark.asyncio
async def test_resource_names_are_copied():
    queue = asyncio.Queue()
    names = ["a"]
    await send_discovery_req(CLUSTER_TYPE, "", "", None, names, queue)
    names.append("b")
    request = queue.get_nowait()
    assert request.resource_names == ["a"]


def test_request_defaults_are_empty_wildcard():
    request = DiscoveryRequest()
    assert request.resource_names == []
    assert request.node is None
    assert request.error_detail is None
    assert request.version_info == ""


def test_response_defaults():
    response = DiscoveryResponse(type_url=LISTENER_TYPE, nonce="x")
    assert response.resources == []
    assert response.canary is False
    assert response.version_info == ""
    assert response.nonce == "x"