"""Tracking of the filter chain reported through LDS by an xDS management server."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from .cluster import EndpointAddress
from .cluster_resources import DecodeError
from .discovery import LISTENER_TYPE, DiscoveryResponse, Resource, send_discovery_req
from .listener_resources import Listener, ListenerFilterChain, TypedConfig

logger = logging.getLogger(__name__)


class FilterError(Exception):
    """A filter could not be found or created."""


class _UpdateError(Exception):
    """A listener update that cannot be applied."""


@dataclass
class ReadContext:
    """A packet travelling from a downstream client towards the endpoints."""

    endpoints: list[Any]
    source: EndpointAddress
    contents: bytes
    metadata: dict[str, Any] = field(default_factory=dict)


class Filter(Protocol):
    def read(self, ctx: ReadContext) -> ReadContext | None:
        """Process a packet; returning None drops it."""


FilterFactory = Callable[[TypedConfig | None], Filter]


class FilterRegistry:
    """Maps filter names to the factories that create them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._factories: dict[str, FilterFactory] = {}

    def register(self, name: str, factory: FilterFactory) -> None:
        """Register (or replace) the factory for ``name``."""
        with self._lock:
            self._factories[name] = factory

    def get(self, name: str, config: TypedConfig | None) -> Filter:
        """Create the filter ``name`` from ``config``."""
        with self._lock:
            factory = self._factories.get(name)
        if factory is None:
            raise FilterError(f"filter `{name}` not found")
        try:
            return factory(config)
        except FilterError:
            raise
        except (TypeError, ValueError, KeyError) as error:
            raise FilterError(f"filter `{name}`: invalid configuration: {error}") from error


class FilterChain:
    """An ordered sequence of named filters applied to each packet."""

    def __init__(self, filters: Iterable[tuple[str, Filter]] = ()) -> None:
        self._filters = tuple(filters)
        for name, filter_ in self._filters:
            if not callable(getattr(filter_, "read", None)):
                raise FilterError(f"filter `{name}` cannot read packets")

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self._filters)

    def __len__(self) -> int:
        return len(self._filters)

    def read(self, ctx: ReadContext) -> ReadContext | None:
        """Run every filter in order; None as soon as one drops the packet."""
        for _, filter_ in self._filters:
            result = filter_.read(ctx)
            if result is None:
                return None
            ctx = result
        return ctx


class SharedFilterChain:
    """The filter chain in use by the proxy, replaced whole on every update."""

    def __init__(self, chain: FilterChain | None = None) -> None:
        self._lock = threading.Lock()
        self._chain = chain if chain is not None else FilterChain()

    def store_chain(self, chain: FilterChain) -> None:
        """Replace the filter chain."""
        with self._lock:
            self._chain = chain

    def read(self, ctx: ReadContext) -> ReadContext | None:
        """Run the current filter chain on a packet."""
        with self._lock:
            chain = self._chain
        return chain.read(ctx)


class ListenerManager:
    """Builds filter chains from LDS responses and ACKs/NACKs them."""

    def __init__(
        self,
        filter_chain: SharedFilterChain,
        discovery_req_queue: asyncio.Queue,
        registry: FilterRegistry | None = None,
    ) -> None:
        self._filter_chain = filter_chain
        self._queue = discovery_req_queue
        self._registry = registry if registry is not None else FilterRegistry()

    async def on_listener_response(self, response: DiscoveryResponse) -> None:
        """Handle an LDS response and reply with an ACK or NACK."""
        logger.debug(
            "%s: received response containing %d resource(s)",
            LISTENER_TYPE,
            len(response.resources),
        )
        try:
            chain = self._process_listener_response(response.resources)
        except (_UpdateError, FilterError) as error:
            error_message: str | None = str(error)
        else:
            self._filter_chain.store_chain(chain)
            error_message = None

        # LDS uses a wildcard request.
        await send_discovery_req(
            LISTENER_TYPE, response.version_info, response.nonce, error_message, [], self._queue
        )

    def _process_listener_response(self, resources: Sequence[Resource]) -> FilterChain:
        if not resources:
            return FilterChain()
        if len(resources) > 1:
            raise _UpdateError(f"at most 1 listener can be specified: got {len(resources)}")

        try:
            listener = Listener.decode(resources[0].value)
        except DecodeError as error:
            raise _UpdateError(f"listener decode error: {error}") from error

        chains = listener.filter_chains
        if not chains:
            return FilterChain()
        if len(chains) > 1:
            raise _UpdateError(f"at most 1 filter chain can be provided: got {len(chains)}")
        return self._process_filter_chain(chains[0])

    def _process_filter_chain(self, lds_chain: ListenerFilterChain) -> FilterChain:
        filters = []
        for lds_filter in lds_chain.filters:
            if lds_filter.config_discovery is not None:
                raise _UpdateError(
                    f"unsupported filter.config_type: {lds_filter.config_discovery!r}"
                )
            filters.append(
                (lds_filter.name, self._registry.get(lds_filter.name, lds_filter.typed_config))
            )
        return FilterChain(filters)