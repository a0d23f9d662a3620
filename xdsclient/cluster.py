"""Tracking of clusters and endpoints reported by an xDS management server."""

from __future__ import annotations

import asyncio
import copy
import ipaddress
import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .cluster_resources import (
    Cluster,
    ClusterLoadAssignment,
    DecodeError,
    EnvoyEndpoint,
    Locality,
    SocketAddress,
)
from .discovery import (
    CLUSTER_TYPE,
    ENDPOINT_TYPE,
    DiscoveryResponse,
    Resource,
    send_discovery_req,
)

logger = logging.getLogger(__name__)

_MAX_PORT = 0xFFFF


class _UpdateError(Exception):
    """An update from the server that cannot be applied."""


def _normalise_host(host: str) -> str:
    try:
        return str(ipaddress.ip_address(host))
    except ValueError:
        return host


@dataclass(frozen=True)
class EndpointAddress:
    """The host and port of an upstream endpoint."""

    host: str
    port: int

    def __post_init__(self) -> None:
        if not self.host:
            raise ValueError("an endpoint address needs a host")
        if not isinstance(self.port, int) or isinstance(self.port, bool):
            raise ValueError(f"invalid port: {self.port!r}")
        if not 0 <= self.port <= _MAX_PORT:
            raise ValueError(f"port out of range: {self.port}")
        object.__setattr__(self, "host", _normalise_host(self.host))

    @classmethod
    def parse(cls, text: str) -> EndpointAddress:
        """Parse ``host:port`` or ``[ipv6]:port``."""
        text = text.strip()
        if text.startswith("["):
            host, sep, rest = text[1:].partition("]")
            if not sep or not rest.startswith(":"):
                raise ValueError(f"invalid endpoint address: {text!r}")
            port_text = rest[1:]
        else:
            host, sep, port_text = text.rpartition(":")
            if not sep or ":" in host:
                raise ValueError(f"invalid endpoint address: {text!r}")
        if not port_text.isdigit():
            raise ValueError(f"invalid port in endpoint address: {text!r}")
        return cls(host, int(port_text))

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def _address_from_socket(address: SocketAddress) -> EndpointAddress:
    if address.named_port is not None:
        raise _UpdateError(f"named ports are not supported: {address.named_port}")
    if address.port_value is None:
        raise _UpdateError("no port provided.")
    try:
        return EndpointAddress(address.address, address.port_value)
    except ValueError as error:
        raise _UpdateError(str(error)) from error


@dataclass
class Endpoint:
    """An upstream endpoint with the metadata attached to it."""

    address: EndpointAddress
    metadata: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass
class LocalityEndpoints:
    """The endpoints of one locality."""

    endpoints: list[Endpoint] = field(default_factory=list)


@dataclass
class ProxyCluster:
    """A cluster's endpoints, keyed by locality (None when unspecified)."""

    localities: dict[Locality | None, LocalityEndpoints] = field(default_factory=dict)


class SharedCluster:
    """The cluster set in use by the proxy, replaced whole on every update."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clusters: dict[str, ProxyCluster] = {}

    def store(self, clusters: Mapping[str, ProxyCluster]) -> None:
        """Replace the cluster set with a copy of ``clusters``."""
        snapshot = copy.deepcopy(dict(clusters))
        with self._lock:
            self._clusters = snapshot

    def load(self) -> Mapping[str, ProxyCluster]:
        """Return a read-only view of the current cluster set."""
        with self._lock:
            return MappingProxyType(self._clusters)

    def endpoints(self) -> tuple[Endpoint, ...]:
        """Return every endpoint of every cluster; empty when there are none."""
        clusters = self.load()
        return tuple(
            endpoint
            for cluster in clusters.values()
            for group in cluster.localities.values()
            for endpoint in group.endpoints
        )


def _process_cluster_load_assignment(
    assignment: ClusterLoadAssignment,
) -> dict[Locality | None, LocalityEndpoints]:
    named_endpoints = dict(assignment.named_endpoints)
    localities: dict[Locality | None, LocalityEndpoints] = {}

    for group in assignment.endpoints:
        endpoints = []
        for lb_endpoint in group.lb_endpoints:
            host = lb_endpoint.host_identifier
            if host is None:
                continue
            if isinstance(host, EnvoyEndpoint):
                envoy_endpoint = host
            else:
                try:
                    envoy_endpoint = named_endpoints.pop(host)
                except KeyError:
                    raise _UpdateError(f"no endpoint found name reference {host}") from None

            if envoy_endpoint.address is None:
                raise _UpdateError("No address provided.")
            address = _address_from_socket(envoy_endpoint.address)
            metadata = copy.deepcopy(lb_endpoint.metadata) if lb_endpoint.metadata else {}
            endpoints.append(Endpoint(address, metadata))

        localities[group.locality] = LocalityEndpoints(endpoints)

    return localities


def _decode(cls: type, resource: Resource, what: str):
    try:
        return cls.decode(resource.value)
    except DecodeError as error:
        raise _UpdateError(f"{what} decode error: {error}") from error


class ClusterManager:
    """Applies CDS and EDS responses to a shared cluster set and ACKs/NACKs them."""

    def __init__(self, shared_cluster: SharedCluster, discovery_req_queue: asyncio.Queue) -> None:
        self._shared_cluster = shared_cluster
        self._queue = discovery_req_queue
        self._clusters: dict[str, ProxyCluster] = {}
        self._last_seen_load_assignment_version: tuple[str, str] | None = None

    async def on_cluster_response(self, response: DiscoveryResponse) -> None:
        """Handle a CDS response and reply with an ACK or NACK."""
        logger.debug(
            "%s: received response containing %d resource(s)",
            CLUSTER_TYPE,
            len(response.resources),
        )
        try:
            await self._process_cluster_response(response.resources)
            error_message = None
        except _UpdateError as error:
            error_message = str(error)

        await send_discovery_req(
            CLUSTER_TYPE, response.version_info, response.nonce, error_message, [], self._queue
        )

    async def _process_cluster_response(self, resources: Iterable[Resource]) -> None:
        new_clusters: dict[str, ProxyCluster] = {}
        for resource in resources:
            cluster: Cluster = _decode(Cluster, resource, "cluster")

            if cluster.discovery_type is not None:
                if cluster.discovery_type != 0:
                    raise _UpdateError(
                        f"unsupported cluster type '{int(cluster.discovery_type)}': "
                        "Only STATIC is supported"
                    )
            elif cluster.custom_cluster_type is not None:
                raise _UpdateError("custom cluster types are unsupported.")
            else:
                raise _UpdateError("no cluster_discovery_type was provided in request")

            localities = (
                _process_cluster_load_assignment(cluster.load_assignment)
                if cluster.load_assignment is not None
                else {}
            )
            new_clusters[cluster.name] = ProxyCluster(localities)

        previous, self._clusters = self._clusters, new_clusters
        self._update_cluster()

        # The endpoint watch always covers exactly the current cluster set.
        if set(previous) != set(self._clusters):
            version_info, nonce = self._last_seen_load_assignment_version or ("", "")
            await self._send_load_assignment_req(version_info, nonce, None)

    async def on_cluster_load_assignment_response(self, response: DiscoveryResponse) -> None:
        """Handle an EDS response and reply with an ACK or NACK."""
        logger.debug(
            "%s: received response containing %d resource(s)",
            ENDPOINT_TYPE,
            len(response.resources),
        )
        self._last_seen_load_assignment_version = (response.version_info, response.nonce)
        try:
            self._process_load_assignment_response(response.resources)
            error_message = None
        except _UpdateError as error:
            error_message = str(error)

        await self._send_load_assignment_req(response.version_info, response.nonce, error_message)

    def _process_load_assignment_response(self, resources: Iterable[Resource]) -> None:
        for resource in resources:
            assignment: ClusterLoadAssignment = _decode(
                ClusterLoadAssignment, resource, "cluster load assignment"
            )
            cluster = self._clusters.get(assignment.cluster_name)
            if cluster is None:
                logger.warning(
                    "Got endpoint for non-existing cluster: %s", assignment.cluster_name
                )
                continue
            cluster.localities = _process_cluster_load_assignment(assignment)

        self._update_cluster()

    def _update_cluster(self) -> None:
        self._shared_cluster.store(self._clusters)

    async def _send_load_assignment_req(
        self, version_info: str, nonce: str, error_message: str | None
    ) -> None:
        await send_discovery_req(
            ENDPOINT_TYPE,
            version_info,
            nonce,
            error_message,
            list(self._clusters),
            self._queue,
        )