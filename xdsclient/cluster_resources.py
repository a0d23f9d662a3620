"""Cluster and endpoint resources as served by an xDS management server.

Resources travel either as message objects or as their encoded form, a JSON
document of the fields set on the message. ``decode`` accepts both and always
returns a fresh message that the caller is free to modify.
"""

from __future__ import annotations

import copy
import enum
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

_M = TypeVar("_M", bound="_Message")


class DecodeError(ValueError):
    """Raised when a resource cannot be decoded into a message."""


class SocketProtocol(enum.IntEnum):
    TCP = 0
    UDP = 1


class DiscoveryType(enum.IntEnum):
    """The service discovery type of a cluster."""

    STATIC = 0
    STRICT_DNS = 1
    LOGICAL_DNS = 2
    EDS = 3
    ORIGINAL_DST = 4


def _value(data: Mapping, key: str, kind: type | tuple[type, ...], default: Any) -> Any:
    """Fetch ``key`` from ``data``, checking its type; missing or null yields ``default``."""
    value = data.get(key)
    if value is None:
        return default
    kinds = kind if isinstance(kind, tuple) else (kind,)
    if isinstance(value, bool) and bool not in kinds:
        raise DecodeError(f"field {key!r}: expected {_names(kinds)}, got bool")
    if not isinstance(value, kinds):
        raise DecodeError(
            f"field {key!r}: expected {_names(kinds)}, got {type(value).__name__}"
        )
    return value


def _names(kinds: tuple[type, ...]) -> str:
    return " or ".join(k.__name__ for k in kinds)


def _message(data: Mapping, key: str, cls: type[_M]) -> _M | None:
    value = _value(data, key, Mapping, None)
    return None if value is None else cls.from_dict(value)


def _messages(data: Mapping, key: str, cls: type[_M]) -> list[_M]:
    items = _value(data, key, list, [])
    result = []
    for item in items:
        if not isinstance(item, Mapping):
            raise DecodeError(f"field {key!r}: expected a list of objects")
        result.append(cls.from_dict(item))
    return result


class _Message:
    """Encoding and decoding shared by every resource message."""

    def to_dict(self) -> dict[str, Any]:  # pragma: no cover - overridden by every message
        raise TypeError(f"{type(self).__name__} has no dictionary form")

    @classmethod
    def from_dict(cls: type[_M], data: Mapping) -> _M:  # pragma: no cover - overridden
        raise TypeError(f"{cls.__name__} has no dictionary form")

    def encode(self) -> bytes:
        """Encode the message to its wire form."""
        return json.dumps(self.to_dict(), sort_keys=True).encode("utf-8")

    @classmethod
    def decode(cls: type[_M], value: Any) -> _M:
        """Decode a message from a message object, a mapping or encoded bytes."""
        if isinstance(value, cls):
            return copy.deepcopy(value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            try:
                value = json.loads(bytes(value).decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as error:
                raise DecodeError(f"invalid {cls.__name__} encoding: {error}") from error
        if not isinstance(value, Mapping):
            raise DecodeError(f"cannot decode {cls.__name__} from {type(value).__name__}")
        try:
            return cls.from_dict(value)
        except (TypeError, ValueError) as error:
            if isinstance(error, DecodeError):
                raise
            raise DecodeError(str(error)) from error


@dataclass
class SocketAddress(_Message):
    """An IP address and a port, given either by number or by name."""

    protocol: int = SocketProtocol.TCP
    address: str = ""
    port_value: int | None = None
    named_port: str | None = None
    resolver_name: str = ""
    ipv4_compat: bool = False

    def __post_init__(self) -> None:
        if self.port_value is not None and self.named_port is not None:
            raise ValueError("a socket address has either a port value or a named port, not both")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "protocol": int(self.protocol),
            "address": self.address,
            "resolver_name": self.resolver_name,
            "ipv4_compat": self.ipv4_compat,
        }
        if self.port_value is not None:
            data["port_value"] = self.port_value
        if self.named_port is not None:
            data["named_port"] = self.named_port
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> SocketAddress:
        try:
            return cls(
                protocol=_value(data, "protocol", int, SocketProtocol.TCP),
                address=_value(data, "address", str, ""),
                port_value=_value(data, "port_value", int, None),
                named_port=_value(data, "named_port", str, None),
                resolver_name=_value(data, "resolver_name", str, ""),
                ipv4_compat=_value(data, "ipv4_compat", bool, False),
            )
        except DecodeError:
            raise
        except ValueError as error:
            raise DecodeError(str(error)) from error


@dataclass
class EnvoyEndpoint(_Message):
    """An upstream host as described by the management server."""

    address: SocketAddress | None = None
    health_check_config: Any = None
    hostname: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"hostname": self.hostname}
        if self.address is not None:
            data["address"] = self.address.to_dict()
        if self.health_check_config is not None:
            data["health_check_config"] = self.health_check_config
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> EnvoyEndpoint:
        return cls(
            address=_message(data, "address", SocketAddress),
            health_check_config=data.get("health_check_config"),
            hostname=_value(data, "hostname", str, ""),
        )


@dataclass
class LbEndpoint(_Message):
    """A load-balanced host: an inline endpoint or a reference to a named one."""

    endpoint: EnvoyEndpoint | None = None
    endpoint_name: str | None = None
    metadata: dict[str, dict[str, Any]] | None = None
    health_status: int = 0
    load_balancing_weight: int | None = None

    def __post_init__(self) -> None:
        if self.endpoint is not None and self.endpoint_name is not None:
            raise ValueError("an lb endpoint has either an endpoint or an endpoint name, not both")

    @property
    def host_identifier(self) -> EnvoyEndpoint | str | None:
        """The inline endpoint, the name it refers to, or None if neither is set."""
        return self.endpoint if self.endpoint is not None else self.endpoint_name

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"health_status": self.health_status}
        if self.endpoint is not None:
            data["endpoint"] = self.endpoint.to_dict()
        if self.endpoint_name is not None:
            data["endpoint_name"] = self.endpoint_name
        if self.metadata is not None:
            data["metadata"] = copy.deepcopy(self.metadata)
        if self.load_balancing_weight is not None:
            data["load_balancing_weight"] = self.load_balancing_weight
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> LbEndpoint:
        metadata = _value(data, "metadata", Mapping, None)
        if metadata is not None:
            for key, value in metadata.items():
                if not isinstance(key, str) or not isinstance(value, Mapping):
                    raise DecodeError("field 'metadata': expected a mapping of names to objects")
            metadata = {key: copy.deepcopy(dict(value)) for key, value in metadata.items()}
        try:
            return cls(
                endpoint=_message(data, "endpoint", EnvoyEndpoint),
                endpoint_name=_value(data, "endpoint_name", str, None),
                metadata=metadata,
                health_status=_value(data, "health_status", int, 0),
                load_balancing_weight=_value(data, "load_balancing_weight", int, None),
            )
        except DecodeError:
            raise
        except ValueError as error:
            raise DecodeError(str(error)) from error


@dataclass(frozen=True)
class Locality(_Message):
    """Where a group of hosts runs."""

    region: str = ""
    zone: str = ""
    sub_zone: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"region": self.region, "zone": self.zone, "sub_zone": self.sub_zone}

    @classmethod
    def from_dict(cls, data: Mapping) -> Locality:
        return cls(
            region=_value(data, "region", str, ""),
            zone=_value(data, "zone", str, ""),
            sub_zone=_value(data, "sub_zone", str, ""),
        )


@dataclass
class LocalityLbEndpoints(_Message):
    """The hosts of one locality."""

    locality: Locality | None = None
    lb_endpoints: list[LbEndpoint] = field(default_factory=list)
    load_balancing_weight: int | None = None
    priority: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "lb_endpoints": [endpoint.to_dict() for endpoint in self.lb_endpoints],
            "priority": self.priority,
        }
        if self.locality is not None:
            data["locality"] = self.locality.to_dict()
        if self.load_balancing_weight is not None:
            data["load_balancing_weight"] = self.load_balancing_weight
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> LocalityLbEndpoints:
        return cls(
            locality=_message(data, "locality", Locality),
            lb_endpoints=_messages(data, "lb_endpoints", LbEndpoint),
            load_balancing_weight=_value(data, "load_balancing_weight", int, None),
            priority=_value(data, "priority", int, 0),
        )


@dataclass
class ClusterLoadAssignment(_Message):
    """The endpoints of a cluster, grouped by locality."""

    cluster_name: str = ""
    endpoints: list[LocalityLbEndpoints] = field(default_factory=list)
    named_endpoints: dict[str, EnvoyEndpoint] = field(default_factory=dict)
    policy: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "cluster_name": self.cluster_name,
            "endpoints": [group.to_dict() for group in self.endpoints],
            "named_endpoints": {
                name: endpoint.to_dict() for name, endpoint in self.named_endpoints.items()
            },
        }
        if self.policy is not None:
            data["policy"] = self.policy
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> ClusterLoadAssignment:
        named = _value(data, "named_endpoints", Mapping, {})
        named_endpoints = {}
        for name, endpoint in named.items():
            if not isinstance(name, str) or not isinstance(endpoint, Mapping):
                raise DecodeError("field 'named_endpoints': expected a mapping of names to objects")
            named_endpoints[name] = EnvoyEndpoint.from_dict(endpoint)
        return cls(
            cluster_name=_value(data, "cluster_name", str, ""),
            endpoints=_messages(data, "endpoints", LocalityLbEndpoints),
            named_endpoints=named_endpoints,
            policy=data.get("policy"),
        )


@dataclass
class Cluster(_Message):
    """A cluster of upstream hosts.

    The discovery type is either a built-in ``discovery_type`` or a
    ``custom_cluster_type``; a cluster may also carry neither.
    """

    name: str = ""
    discovery_type: int | None = None
    custom_cluster_type: dict[str, Any] | None = None
    load_assignment: ClusterLoadAssignment | None = None

    def __post_init__(self) -> None:
        if self.discovery_type is not None and self.custom_cluster_type is not None:
            raise ValueError("a cluster has either a discovery type or a custom cluster type, not both")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if self.discovery_type is not None:
            data["type"] = int(self.discovery_type)
        if self.custom_cluster_type is not None:
            data["cluster_type"] = copy.deepcopy(self.custom_cluster_type)
        if self.load_assignment is not None:
            data["load_assignment"] = self.load_assignment.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> Cluster:
        custom = _value(data, "cluster_type", Mapping, None)
        try:
            return cls(
                name=_value(data, "name", str, ""),
                discovery_type=_value(data, "type", int, None),
                custom_cluster_type=None if custom is None else copy.deepcopy(dict(custom)),
                load_assignment=_message(data, "load_assignment", ClusterLoadAssignment),
            )
        except DecodeError:
            raise
        except ValueError as error:
            raise DecodeError(str(error)) from error