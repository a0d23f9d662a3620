"""Client for the aggregated discovery service (ADS) of an xDS management server."""

from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
import itertools
import json
import logging
import random
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Iterator, Mapping
from dataclasses import asdict, dataclass
from typing import Any, Protocol
from urllib.parse import urlsplit

from .cluster import ClusterManager, SharedCluster
from .discovery import (
    CLUSTER_TYPE,
    ENDPOINT_TYPE,
    LISTENER_TYPE,
    UPDATES_CHANNEL_BUFFER_SIZE,
    DiscoveryRequest,
    DiscoveryResponse,
    Node,
    Resource,
)
from .listener import FilterRegistry, ListenerManager, SharedFilterChain
from .metrics import Metrics

logger = logging.getLogger(__name__)

BACKOFF_INITIAL_DELAY = 0.5
BACKOFF_MAX_DELAY = 30.0
BACKOFF_MAX_JITTER_MILLISECONDS = 2000
USER_AGENT_NAME = "xdsclient"

_SEND_ERRORS: tuple[type[BaseException], ...] = (RuntimeError,)
if hasattr(asyncio, "QueueShutDown"):
    _SEND_ERRORS = _SEND_ERRORS + (asyncio.QueueShutDown,)


@dataclass(frozen=True)
class ManagementServer:
    """The address of an xDS management server."""

    address: str


class RpcSessionError(Exception):
    """A session with a management server ended with an error."""


class InitialConnectError(RpcSessionError):
    """The connection to the management server could not be established."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"Failed to establish initial connection.\n {cause!r}")


class ReceiveError(RpcSessionError):
    """Receiving from the management server failed."""

    def __init__(self, status: object) -> None:
        self.status = status
        super().__init__(f"Error occurred while receiving data. Status: {status}")


class NonRecoverableError(RpcSessionError):
    """An error after which retrying makes no sense."""

    def __init__(self, message: str, cause: BaseException) -> None:
        self.message = message
        self.cause = cause
        super().__init__(f"Non-recoverable aDS error:\nname: {message}\n{cause}")


class _UnexpectedResource(ValueError):
    def __init__(self, type_url: str) -> None:
        self.type_url = type_url
        super().__init__(f"unexpected resource type: {type_url}")


def backoff_delay(attempt: int) -> float:
    """Delay in seconds before retry ``attempt`` (1-based), without jitter."""
    exponent = max(0, min(attempt - 1, 32))
    return min(BACKOFF_INITIAL_DELAY * 2.0**exponent, BACKOFF_MAX_DELAY)


class _AdsConnection(Protocol):
    async def stream_aggregated_resources(
        self, requests: AsyncIterator[DiscoveryRequest]
    ) -> AsyncIterator[DiscoveryResponse]:
        """Open the stream: send ``requests`` and return the responses."""


_Connector = Callable[[str], Awaitable[_AdsConnection]]


def _encode_request(request: DiscoveryRequest) -> bytes:
    return json.dumps(asdict(request), separators=(",", ":")).encode("utf-8") + b"\n"


def _decode_resource(data: Any) -> Resource:
    if not isinstance(data, Mapping):
        raise ValueError("a resource must be an object")
    if "value_base64" in data:
        try:
            value: Any = base64.b64decode(data["value_base64"], validate=True)
        except (binascii.Error, TypeError, ValueError) as error:
            raise ValueError(f"invalid encoded resource value: {error}") from error
    else:
        value = data.get("value")
    return Resource(type_url=str(data.get("type_url", "")), value=value)


def _decode_response(line: bytes) -> DiscoveryResponse:
    try:
        data = json.loads(line)
    except ValueError as error:
        raise ValueError(f"malformed discovery response: {error}") from error
    if not isinstance(data, Mapping):
        raise ValueError("a discovery response must be an object")
    resources = data.get("resources") or []
    if not isinstance(resources, list):
        raise ValueError("discovery response resources must be a list")
    return DiscoveryResponse(
        version_info=str(data.get("version_info", "")),
        resources=[_decode_resource(item) for item in resources],
        canary=bool(data.get("canary", False)),
        type_url=str(data.get("type_url", "")),
        nonce=str(data.get("nonce", "")),
        control_plane=data.get("control_plane"),
    )


class _JsonStreamConnection:
    """Discovery messages exchanged as JSON lines over a stream connection."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer

    async def stream_aggregated_resources(
        self, requests: AsyncIterator[DiscoveryRequest]
    ) -> AsyncIterator[DiscoveryResponse]:
        return self._exchange(requests)

    async def _write_all(self, requests: AsyncIterator[DiscoveryRequest]) -> None:
        async for request in requests:
            self._writer.write(_encode_request(request))
            await self._writer.drain()

    async def _exchange(
        self, requests: AsyncIterator[DiscoveryRequest]
    ) -> AsyncIterator[DiscoveryResponse]:
        writer_task = asyncio.create_task(self._write_all(requests))
        writer_task.add_done_callback(lambda task: task.cancelled() or task.exception())
        try:
            while True:
                line = await self._reader.readline()
                if not line:
                    return
                yield _decode_response(line)
        finally:
            writer_task.cancel()
            self._writer.close()


async def _connect_json_stream(address: str) -> _JsonStreamConnection:
    parts = urlsplit(address)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise InitialConnectError(ValueError(f"invalid url: {address!r}"))
    try:
        port = parts.port
    except ValueError as error:
        raise InitialConnectError(ValueError(f"invalid url: {address!r}")) from error
    secure = parts.scheme == "https"
    if port is None:
        port = 443 if secure else 80
    try:
        reader, writer = await asyncio.open_connection(
            parts.hostname, port, ssl=True if secure else None
        )
    except OSError as error:
        raise InitialConnectError(error) from error
    return _JsonStreamConnection(reader, writer)


async def _iter_queue(queue: asyncio.Queue) -> AsyncIterator[DiscoveryRequest]:
    while True:
        yield await queue.get()


async def _next(iterator: AsyncIterator[DiscoveryResponse]) -> DiscoveryResponse:
    return await iterator.__anext__()


@dataclass
class ResourceHandlers:
    """The components that handle responses for the supported resource types."""

    cluster_manager: ClusterManager
    listener_manager: ListenerManager

    async def handle_discovery_response(self, response: DiscoveryResponse) -> None:
        """Route a response to its manager; raise ValueError for unknown types."""
        if response.type_url == CLUSTER_TYPE:
            await self.cluster_manager.on_cluster_response(response)
        elif response.type_url == ENDPOINT_TYPE:
            await self.cluster_manager.on_cluster_load_assignment_response(response)
        elif response.type_url == LISTENER_TYPE:
            await self.listener_manager.on_listener_response(response)
        else:
            raise _UnexpectedResource(response.type_url)


class _RpcSender:
    def __init__(self, metrics: Metrics, rpc_queue: asyncio.Queue) -> None:
        self._metrics = metrics
        self._queue = rpc_queue

    async def send_initial_cds_and_lds_request(self, node_id: str) -> None:
        for resource_type in (CLUSTER_TYPE, LISTENER_TYPE):
            request = DiscoveryRequest(
                node=Node(id=node_id, user_agent_name=USER_AGENT_NAME),
                resource_names=[],  # wildcard mode
                type_url=resource_type,
            )
            try:
                await self.send_discovery_request(request)
            except _SEND_ERRORS as error:
                raise NonRecoverableError(
                    "failed to send initial discovery request for resource on channel", error
                ) from error

    async def send_discovery_request(self, request: DiscoveryRequest) -> None:
        if request.error_detail is not None:
            self._metrics.update_failure_total.inc()
        else:
            self._metrics.update_success_total.inc()
        self._metrics.requests_total.inc()
        logger.debug("Sending rpc discovery: %r", request)
        await self._queue.put(request)


@dataclass
class RpcSession:
    """One ADS session: a receive loop and a send loop running together."""

    discovery_req_queue: asyncio.Queue
    metrics: Metrics
    node_id: str
    addr: str
    resource_handlers: ResourceHandlers
    shutdown: asyncio.Event
    connector: _Connector = _connect_json_stream

    async def run(self) -> None:
        """Run the session until the stream closes, shutdown, or an error."""
        try:
            connection = await self.connector(self.addr)
        except RpcSessionError:
            raise
        except Exception as error:
            raise InitialConnectError(error) from error

        rpc_queue: asyncio.Queue = asyncio.Queue(maxsize=UPDATES_CHANNEL_BUFFER_SIZE)
        sender = _RpcSender(self.metrics, rpc_queue)
        recv_task = asyncio.create_task(self._receive_loop(connection, rpc_queue))
        send_task = asyncio.create_task(self._send_loop(sender))
        try:
            done, _ = await asyncio.wait(
                {recv_task, send_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if recv_task not in done:
                failure = send_task.exception()
                if failure is not None:
                    raise failure
                logger.info("Exiting send loop")
                await asyncio.wait({recv_task})
            self._receive_result(recv_task)
        finally:
            for task in (recv_task, send_task):
                task.cancel()
            await asyncio.gather(recv_task, send_task, return_exceptions=True)

    @staticmethod
    def _receive_result(task: asyncio.Task) -> None:
        error = task.exception()
        if error is None:
            return
        if isinstance(error, RpcSessionError):
            raise error
        raise NonRecoverableError("receive loop encountered an error", error) from error

    async def _send_loop(self, sender: _RpcSender) -> None:
        await sender.send_initial_cds_and_lds_request(self.node_id)
        while True:
            request = await self.discovery_req_queue.get()
            try:
                await sender.send_discovery_request(request)
            except _SEND_ERRORS as error:
                raise NonRecoverableError(
                    "failed to send discovery request on channel", error
                ) from error

    async def _receive_loop(self, connection: _AdsConnection, rpc_queue: asyncio.Queue) -> None:
        try:
            responses = await connection.stream_aggregated_resources(_iter_queue(rpc_queue))
        except RpcSessionError:
            raise
        except Exception as error:
            raise ReceiveError(error) from error

        self.metrics.connected_state.set(1)
        shutdown_wait = asyncio.create_task(self.shutdown.wait())
        try:
            while True:
                next_response = asyncio.create_task(_next(responses))
                done, _ = await asyncio.wait(
                    {next_response, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if next_response not in done:
                    next_response.cancel()
                    await asyncio.gather(next_response, return_exceptions=True)
                    logger.info("Exiting receive loop - received shutdown signal")
                    return
                try:
                    response = next_response.result()
                except StopAsyncIteration:
                    logger.info("Exiting receive loop - response stream closed.")
                    return
                except Exception as error:
                    raise ReceiveError(error) from error

                self.metrics.update_attempt_total.inc()
                try:
                    await self.resource_handlers.handle_discovery_response(response)
                except _UnexpectedResource as error:
                    self.metrics.update_failure_total.inc()
                    logger.error("Unexpected resource: %s", error.type_url)
        finally:
            self.metrics.connected_state.set(0)
            shutdown_wait.cancel()
            aclose = getattr(responses, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()


class AdsClient:
    """Tracks CDS, EDS and LDS resources on an ADS server, retrying with backoff."""

    def __init__(
        self,
        connector: _Connector | None = None,
        registry: FilterRegistry | None = None,
        metrics: Metrics | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.metrics = metrics if metrics is not None else Metrics()
        self._connector = connector if connector is not None else _connect_json_stream
        self._registry = registry if registry is not None else FilterRegistry()
        self._sleep = sleep
        self._rng = rng if rng is not None else random.Random()

    async def run(
        self,
        node_id: str,
        cluster: SharedCluster,
        management_servers: Iterable[ManagementServer],
        filter_chain: SharedFilterChain,
        shutdown: asyncio.Event,
    ) -> None:
        """Run sessions against the servers in turn until shutdown or a fatal error."""
        servers = list(management_servers)
        if not servers:
            raise ValueError("at least one management server is required")

        retry = asyncio.create_task(
            self._run_with_retries(node_id, cluster, itertools.cycle(servers), filter_chain, shutdown)
        )
        stop = asyncio.create_task(shutdown.wait())
        try:
            done, _ = await asyncio.wait({retry, stop}, return_when=asyncio.FIRST_COMPLETED)
            if stop in done:
                logger.info("Stopping client execution - received shutdown signal.")
                return
            retry.result()
        finally:
            for task in (retry, stop):
                task.cancel()
            await asyncio.gather(retry, stop, return_exceptions=True)

    async def _run_with_retries(
        self,
        node_id: str,
        cluster: SharedCluster,
        servers: Iterator[ManagementServer],
        filter_chain: SharedFilterChain,
        shutdown: asyncio.Event,
    ) -> None:
        attempt = 0
        while True:
            queue: asyncio.Queue = asyncio.Queue(maxsize=UPDATES_CHANNEL_BUFFER_SIZE)
            handlers = ResourceHandlers(
                cluster_manager=ClusterManager(cluster, queue),
                listener_manager=ListenerManager(filter_chain, queue, self._registry),
            )
            session = RpcSession(
                discovery_req_queue=queue,
                metrics=self.metrics,
                node_id=node_id,
                addr=next(servers).address,
                resource_handlers=handlers,
                shutdown=shutdown,
                connector=self._connector,
            )
            try:
                await session.run()
                return
            except RpcSessionError as error:
                attempt += 1
                delay = self._retry_delay(error, attempt)
                if delay is None:
                    raise
            await self._sleep(delay)

    def _retry_delay(self, error: RpcSessionError, attempt: int) -> float | None:
        """The delay before the next attempt, or None to give up."""
        delay = backoff_delay(attempt) + self._rng.randrange(BACKOFF_MAX_JITTER_MILLISECONDS) / 1000
        if isinstance(error, NonRecoverableError):
            logger.error("%s: %s", error.message, error.cause)
            return None
        if isinstance(error, InitialConnectError):
            logger.error("Unable to connect to the XDS server: %r", error.cause)
            if "invalid url" in repr(error.cause).lower():
                return None
            return delay
        logger.error("Failed to receive response from XDS server: %s", error)
        return delay