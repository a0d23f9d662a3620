"""Listener resources as served by an xDS management server.

Like the cluster resources, these travel either as message objects or as
their encoded form; ``decode`` accepts both and returns a fresh message.
"""

from __future__ import annotations

import base64
import binascii
import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .cluster_resources import DecodeError, _message, _messages, _Message, _value


@dataclass
class TypedConfig(_Message):
    """A filter configuration tagged with the URL of its type.

    The value is either raw bytes or a JSON-compatible structure.
    """

    type_url: str = ""
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type_url": self.type_url}
        if isinstance(self.value, (bytes, bytearray, memoryview)):
            data["value_base64"] = base64.b64encode(bytes(self.value)).decode("ascii")
        elif self.value is not None:
            data["value"] = copy.deepcopy(self.value)
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> TypedConfig:
        encoded = _value(data, "value_base64", str, None)
        if encoded is not None:
            if data.get("value") is not None:
                raise DecodeError("a typed config has either a value or an encoded value, not both")
            try:
                value: Any = base64.b64decode(encoded, validate=True)
            except binascii.Error as error:
                raise DecodeError(f"field 'value_base64': {error}") from error
        else:
            value = copy.deepcopy(data.get("value"))
        return cls(type_url=_value(data, "type_url", str, ""), value=value)


@dataclass
class ListenerFilter(_Message):
    """A named filter with its configuration.

    The configuration is either inline (``typed_config``) or to be fetched
    through discovery (``config_discovery``); a filter may also carry neither.
    """

    name: str = ""
    typed_config: TypedConfig | None = None
    config_discovery: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.typed_config is not None and self.config_discovery is not None:
            raise ValueError("a filter has either a typed config or a config discovery, not both")

    @property
    def config_type(self) -> TypedConfig | dict[str, Any] | None:
        """Whichever configuration is set, or None."""
        if self.typed_config is not None:
            return self.typed_config
        return self.config_discovery

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if self.typed_config is not None:
            data["typed_config"] = self.typed_config.to_dict()
        if self.config_discovery is not None:
            data["config_discovery"] = copy.deepcopy(self.config_discovery)
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> ListenerFilter:
        discovery = _value(data, "config_discovery", Mapping, None)
        try:
            return cls(
                name=_value(data, "name", str, ""),
                typed_config=_message(data, "typed_config", TypedConfig),
                config_discovery=None if discovery is None else copy.deepcopy(dict(discovery)),
            )
        except DecodeError:
            raise
        except ValueError as error:
            raise DecodeError(str(error)) from error


@dataclass
class ListenerFilterChain(_Message):
    """An ordered list of filters."""

    name: str = ""
    filters: list[ListenerFilter] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "filters": [f.to_dict() for f in self.filters]}

    @classmethod
    def from_dict(cls, data: Mapping) -> ListenerFilterChain:
        return cls(
            name=_value(data, "name", str, ""),
            filters=_messages(data, "filters", ListenerFilter),
        )


@dataclass
class Listener(_Message):
    """A listener and the filter chains it applies."""

    name: str = ""
    filter_chains: list[ListenerFilterChain] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "filter_chains": [chain.to_dict() for chain in self.filter_chains],
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> Listener:
        return cls(
            name=_value(data, "name", str, ""),
            filter_chains=_messages(data, "filter_chains", ListenerFilterChain),
        )