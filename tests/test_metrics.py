import pytest

from xdsclient.metrics import Counter, Gauge, Metrics


def test_counter_increments_by_one():
    counter = Counter("things_total", "test", "Things counted.")
    before = counter.value
    counter.inc()
    counter.inc()
    assert counter.value == before + 2


def test_counter_starts_at_zero():
    counter = Counter("fresh_total", "test", "Fresh counter.")
    assert counter.value == 0


def test_gauge_set_and_reset():
    gauge = Gauge("state", "test", "A state.")
    gauge.set(1)
    assert gauge.value == 1
    gauge.set(0)
    assert gauge.value == 0


def test_gauge_rejects_negative_value():
    gauge = Gauge("state", "test", "A state.")
    with pytest.raises(ValueError):
        gauge.set(-1)


def test_metrics_are_shared_between_instances():
    first = Metrics()
    second = Metrics()
    assert first.requests_total is second.requests_total
    before = second.requests_total.value
    first.requests_total.inc()
    assert second.requests_total.value == before + 1


def test_metrics_connected_state_shared():
    first = Metrics()
    second = Metrics()
    first.connected_state.set(1)
    assert second.connected_state.value == 1
    second.connected_state.set(0)
    assert first.connected_state.value == 0


def test_metric_names_and_subsystem():
    metrics = Metrics()
    names = {
        metrics.connected_state.name,
        metrics.update_attempt_total.name,
        metrics.update_success_total.name,
        metrics.update_failure_total.name,
        metrics.requests_total.name,
    }
    assert names == {
        "connected_state",
        "update_attempt_total",
        "update_success_total",
        "update_failure_total",
        "requests_total",
    }
    assert metrics.requests_total.subsystem == "xds"
    assert metrics.requests_total.help == (
        "Total number of discovery requests made to the xDS management server."
    )


def test_counters_are_independent():
    metrics = Metrics()
    success_before = metrics.update_success_total.value
    failure_before = metrics.update_failure_total.value
    metrics.update_failure_total.inc()
    assert metrics.update_failure_total.value == failure_before + 1
    assert metrics.update_success_total.value == success_before