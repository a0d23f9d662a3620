"""Discovery protocol messages and the helper that queues ACK/NACK requests."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

CLUSTER_TYPE = "type.googleapis.com/envoy.config.cluster.v3.Cluster"
ENDPOINT_TYPE = "type.googleapis.com/envoy.config.endpoint.v3.ClusterLoadAssignment"
LISTENER_TYPE = "type.googleapis.com/envoy.config.listener.v3.Listener"

# Queues between the resource managers and the server hold a single update, so
# updates are fetched at about the pace at which they can be applied.
UPDATES_CHANNEL_BUFFER_SIZE = 1

# The rpc status code for an unknown error.
UNKNOWN_STATUS_CODE = 2

_SEND_ERRORS: tuple[type[BaseException], ...] = (RuntimeError,)
if hasattr(asyncio, "QueueShutDown"):
    _SEND_ERRORS = _SEND_ERRORS + (asyncio.QueueShutDown,)


@dataclass
class GrpcStatus:
    """An rpc status attached to a request that rejects an update."""

    code: int = 0
    message: str = ""
    details: list = field(default_factory=list)


@dataclass
class Node:
    """Identifies the client to the management server."""

    id: str = ""
    user_agent_name: str = ""


@dataclass
class Resource:
    """A typed, encoded resource carried in a discovery response."""

    type_url: str = ""
    value: object = None


@dataclass
class DiscoveryRequest:
    """A request for resources, also used to ACK or NACK a response."""

    version_info: str = ""
    node: Node | None = None
    resource_names: list[str] = field(default_factory=list)
    type_url: str = ""
    response_nonce: str = ""
    error_detail: GrpcStatus | None = None


@dataclass
class DiscoveryResponse:
    """A set of resources of one type sent by the management server."""

    version_info: str = ""
    resources: list[Resource] = field(default_factory=list)
    canary: bool = False
    type_url: str = ""
    nonce: str = ""
    control_plane: object = None


async def send_discovery_req(
    type_url: str,
    version_info: str,
    response_nonce: str,
    error_message: str | None,
    resource_names: list[str],
    queue: asyncio.Queue,
) -> None:
    """Queue a discovery request; an error message turns it into a NACK.

    A failure to queue only happens while shutting down, so it is logged and
    otherwise ignored.
    """
    error_detail = (
        GrpcStatus(code=UNKNOWN_STATUS_CODE, message=error_message, details=[])
        if error_message is not None
        else None
    )
    request = DiscoveryRequest(
        version_info=version_info,
        response_nonce=response_nonce,
        type_url=type_url,
        resource_names=list(resource_names),
        node=None,
        error_detail=error_detail,
    )
    try:
        await queue.put(request)
    except _SEND_ERRORS as error:
        logger.warning(
            "Failed to send discovery request (type=%s): %s", type_url, error
        )