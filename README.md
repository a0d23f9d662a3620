# xdsclient

An asyncio client for an xDS aggregated discovery service (ADS). It keeps a
proxy's view of its upstream clusters, their endpoints and its listener filter
chain in step with a management server, and answers every discovery response
with an ACK or a NACK.

## Modules

- `xdsclient.discovery` – the protocol messages (`DiscoveryRequest`,
  `DiscoveryResponse`, `Resource`, `Node`, `GrpcStatus`), the type URLs
  `CLUSTER_TYPE`, `ENDPOINT_TYPE` and `LISTENER_TYPE`, and
  `send_discovery_req`, which puts an ACK (or, given an error message, a NACK
  carrying status code 2) on an `asyncio.Queue`.
- `xdsclient.cluster_resources` – cluster resources: `Cluster`,
  `ClusterLoadAssignment`, `LocalityLbEndpoints`, `Locality`, `LbEndpoint`,
  `EnvoyEndpoint`, `SocketAddress`. Each has `encode()` and `decode()`;
  `decode` accepts a message object, a mapping or encoded bytes and raises
  `DecodeError` on bad input.
- `xdsclient.cluster` – `ClusterManager` applies cluster (CDS) and cluster load
  assignment (EDS) responses, building `ProxyCluster` objects whose
  `Endpoint`s are grouped by `Locality`, and publishes them through a
  `SharedCluster` (`store`, `load`, `endpoints`). `EndpointAddress.parse`
  reads `host:port` and `[ipv6]:port`.
- `xdsclient.listener_resources` – listener resources: `Listener`,
  `ListenerFilterChain`, `ListenerFilter`, `TypedConfig`.
- `xdsclient.listener` – `ListenerManager` turns a listener response into a
  `FilterChain` built from the factories in a `FilterRegistry` and publishes it
  through a `SharedFilterChain`. Packets are run through the chain as
  `ReadContext` objects.
- `xdsclient.ads_client` – `AdsClient` and `RpcSession`, which run the
  session with a management server, and `backoff_delay`.
- `xdsclient.metrics` – `Metrics`, holding the `connected_state` `Gauge` and
  the `update_attempt_total`, `update_success_total`, `update_failure_total`
  and `requests_total` `Counter`s. Metrics are registered once per process and
  shared by every `Metrics` instance.

## Behaviour

- Only static clusters (`discovery_type` 0) are accepted. Another discovery
  type, a custom cluster type, no type at all, a named port, a missing address
  or an unknown endpoint name reference makes the whole response a NACK.
- Whenever the set of cluster names changes, an endpoint request naming the
  current clusters is sent, using the version and nonce of the last endpoint
  response seen (empty strings before any).
- An endpoint assignment for a cluster that is not known is logged and skipped.
- At most one listener per response and one filter chain per listener are
  accepted; an empty response or a listener without filter chains installs an
  empty chain. An unregistered filter gives the NACK message
  ``filter `NAME` not found``.
- Errors met while processing a response are not raised to the caller: they
  become the message of the NACK, and the previously published state stays.

## Example

```python
import asyncio

from xdsclient.cluster import ClusterManager, SharedCluster
from xdsclient.cluster_resources import (
    Cluster, ClusterLoadAssignment, EnvoyEndpoint, LbEndpoint,
    LocalityLbEndpoints, SocketAddress,
)
from xdsclient.discovery import CLUSTER_TYPE, DiscoveryResponse, Resource


async def main():
    requests = asyncio.Queue()
    shared = SharedCluster()
    manager = ClusterManager(shared, requests)

    cluster = Cluster(
        name="a",
        discovery_type=0,
        load_assignment=ClusterLoadAssignment(
            cluster_name="a",
            endpoints=[LocalityLbEndpoints(lb_endpoints=[
                LbEndpoint(endpoint=EnvoyEndpoint(
                    address=SocketAddress(address="127.0.0.1", port_value=2020)))
            ])],
        ),
    )
    response = DiscoveryResponse(
        version_info="1", nonce="2", type_url=CLUSTER_TYPE,
        resources=[Resource(type_url=CLUSTER_TYPE, value=cluster.encode())],
    )
    await manager.on_cluster_response(response)

    while not requests.empty():
        request = requests.get_nowait()
        print(request.type_url, request.resource_names, request.error_detail)
    print(shared.endpoints())


asyncio.run(main())
```

Filters are registered by name with a factory that receives the filter's
`TypedConfig` (or `None`) and returns an object whose `read(ctx)` returns a
`ReadContext`, or `None` to drop the packet:

```python
from xdsclient.listener import FilterRegistry

registry = FilterRegistry()
registry.register("filter.append", make_append_filter)
```

## Running a client

```python
client = AdsClient(registry=registry)
await client.run("node-1", SharedCluster(), [ManagementServer("http://127.0.0.1:18000")],
                 SharedFilterChain(), shutdown_event)
```

`run` cycles through the servers, retrying failed sessions after
`backoff_delay(attempt)` (500 ms doubling up to 30 s) plus up to 2 s of random
jitter. It returns when the `asyncio.Event` is set or a session ends cleanly,
and raises `NonRecoverableError`, or `InitialConnectError` for an invalid
server URL, without retrying.

## What it does not do

The package does not speak gRPC or protobuf. The default connector opens a
TCP (or, for `https://`, TLS) connection to the server's host and port and
exchanges newline-separated JSON: each request is the JSON form of a
`DiscoveryRequest`, each response a JSON object with `version_info`, `nonce`,
`type_url` and `resources` (each with `type_url` and either `value` or
`value_base64`). To talk to a real ADS server, pass `AdsClient` a `connector`:
an async callable taking the address and returning an object whose
`stream_aggregated_resources(requests)` returns an async iterator of
`DiscoveryResponse`. There is no proxy, no command-line program and no metrics
endpoint; metrics are only kept in memory.

## Installing and testing

```
pip install .
pip install .[test]
pytest
```

The package has no runtime dependencies beyond the standard library.