"""Counters and gauges describing the state of the xDS client."""

from __future__ import annotations

import threading

_SUBSYSTEM = "xds"


class Counter:
    """A monotonically increasing unsigned integer metric."""

    def __init__(self, name: str, subsystem: str, help: str) -> None:
        self.name = name
        self.subsystem = subsystem
        self.help = help
        self._value = 0
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        return self._value

    def inc(self) -> None:
        """Increase the counter by one."""
        with self._lock:
            self._value += 1

    def __repr__(self) -> str:
        return f"Counter({self.subsystem}_{self.name}={self._value})"


class Gauge:
    """An unsigned integer metric that can be set to any value."""

    def __init__(self, name: str, subsystem: str, help: str) -> None:
        self.name = name
        self.subsystem = subsystem
        self.help = help
        self._value = 0
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        return self._value

    def set(self, value: int) -> None:
        """Set the gauge; the value must be a non-negative integer."""
        if value < 0:
            raise ValueError(f"gauge {self.name!r} cannot hold a negative value: {value}")
        with self._lock:
            self._value = int(value)

    def __repr__(self) -> str:
        return f"Gauge({self.subsystem}_{self.name}={self._value})"


_registry: dict[tuple[str, str], Counter | Gauge] = {}
_registry_lock = threading.Lock()


def _register(kind: type, name: str, subsystem: str, help: str):
    """Return the metric registered under this name, creating it if absent."""
    key = (subsystem, name)
    with _registry_lock:
        existing = _registry.get(key)
        if existing is not None:
            if not isinstance(existing, kind):
                raise ValueError(
                    f"metric {subsystem}_{name} is already registered as a different kind"
                )
            return existing
        metric = kind(name, subsystem, help)
        _registry[key] = metric
        return metric


class Metrics:
    """The xDS client's metrics; every instance shares the registered metrics."""

    def __init__(self) -> None:
        self.connected_state: Gauge = _register(
            Gauge,
            "connected_state",
            _SUBSYSTEM,
            "A boolean that indicates the current connection state with the xDS management server.",
        )
        self.update_attempt_total: Counter = _register(
            Counter,
            "update_attempt_total",
            _SUBSYSTEM,
            "Total number of attempts made by the xDS management server to update resources.",
        )
        self.update_success_total: Counter = _register(
            Counter,
            "update_success_total",
            _SUBSYSTEM,
            "Total number of successful attempts made by the xDS management server to update resources.",
        )
        self.update_failure_total: Counter = _register(
            Counter,
            "update_failure_total",
            _SUBSYSTEM,
            "Total number of failed attempts made by the xDS management server to update resources.",
        )
        self.requests_total: Counter = _register(
            Counter,
            "requests_total",
            _SUBSYSTEM,
            "Total number of discovery requests made to the xDS management server.",
        )