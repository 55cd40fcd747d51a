from __future__ import annotations

import pytest

from app.monitoring.registry import MetricsRegistry


def test_render_labelled_counter_and_gauge():
    registry = MetricsRegistry()
    requests = registry.counter("requests_total", "Handled requests.", label_names=("kind",))
    active = registry.gauge("active_things", "Things in flight.")

    requests.labels("message").inc()
    requests.labels("message").inc(2)
    requests.labels('re"ply').inc()
    active.set(3)
    active.dec()

    body = registry.render()

    assert body.splitlines() == [
        "# HELP active_things Things in flight.",
        "# TYPE active_things gauge",
        "active_things 2",
        "# HELP requests_total Handled requests.",
        "# TYPE requests_total counter",
        'requests_total{kind="message"} 3',
        'requests_total{kind="re\\"ply"} 1',
    ]


def test_empty_metric_renders_zero():
    registry = MetricsRegistry()
    registry.counter("idle_total", "Never touched.")

    assert "idle_total 0" in registry.render()


def test_label_arity_and_counter_direction_are_enforced():
    registry = MetricsRegistry()
    counter = registry.counter("errors_total", "Errors.", label_names=("topic", "reason"))

    with pytest.raises(ValueError):
        counter.labels("only-one")
    with pytest.raises(ValueError):
        counter.labels("a", "b").inc(-1)
    with pytest.raises(AttributeError):
        counter.labels("a", "b").dec()
    with pytest.raises(ValueError):
        registry.counter("errors_total", "Duplicate.")
