# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Metrics collection for the tracker's own health (captures, flushes, requeues)."""

import logging
import os
from abc import ABC, abstractmethod

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

logger = logging.getLogger(__name__)

Tags = dict[str, str] | None


class MetricsCollector(ABC):
    """Pluggable interface for counters, histograms and gauges."""

    @abstractmethod
    def increment(self, name: str, value: float = 1.0, tags: Tags = None) -> None:
        """Increment a counter metric."""
        pass

    @abstractmethod
    def observe(self, name: str, value: float, tags: Tags = None) -> None:
        """Observe a value for a histogram metric (e.g. a duration)."""
        pass

    @abstractmethod
    def gauge(self, name: str, value: float, tags: Tags = None) -> None:
        """Set a gauge metric to a specific value."""
        pass


class NoOpMetricsCollector(MetricsCollector):
    """Collector that records calls in memory without exporting them.

    Useful for tests and for deployments that do not scrape metrics.
    """

    def __init__(self, **kwargs):
        self.counters: list[tuple[str, float, Tags]] = []
        self.observations: list[tuple[str, float, Tags]] = []
        self.gauges: list[tuple[str, float, Tags]] = []

    def increment(self, name: str, value: float = 1.0, tags: Tags = None) -> None:
        self.counters.append((name, value, tags))

    def observe(self, name: str, value: float, tags: Tags = None) -> None:
        self.observations.append((name, value, tags))

    def gauge(self, name: str, value: float, tags: Tags = None) -> None:
        self.gauges.append((name, value, tags))

    def get_counter_total(self, name: str, tags: Tags = None) -> float:
        """Sum a counter, optionally restricted to exact tag matches."""
        return sum(
            value for counter_name, value, counter_tags in self.counters
            if counter_name == name and (tags is None or counter_tags == tags)
        )

    def get_observations(self, name: str) -> list[float]:
        return [value for obs_name, value, _ in self.observations if obs_name == name]

    def get_gauge_value(self, name: str) -> float | None:
        matching = [value for gauge_name, value, _ in self.gauges if gauge_name == name]
        return matching[-1] if matching else None


class PrometheusMetricsCollector(MetricsCollector):
    """Prometheus collector backed by prometheus_client.

    All calls for one metric name must use the same label keys, as
    Prometheus requires.
    """

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        namespace: str = "panel",
        raise_on_error: bool = False,
    ):
        """Initialize Prometheus metrics collector.

        Args:
            registry: Optional Prometheus registry (uses default if None)
            namespace: Namespace prefix for all metrics
            raise_on_error: Raise on metric errors instead of logging them
        """
        self.registry = registry
        self.namespace = namespace
        self.raise_on_error = raise_on_error
        self._metrics: dict[tuple[type, str, tuple[str, ...]], object] = {}

    def _get_or_create(self, metric_type: type, name: str, tags: Tags):
        labelnames = tuple(sorted(tags)) if tags else ()
        cache_key = (metric_type, name, labelnames)
        if cache_key not in self._metrics:
            kwargs = {
                "name": name,
                "documentation": f"{metric_type.__name__} metric: {name}",
                "labelnames": labelnames,
                "namespace": self.namespace,
            }
            if self.registry is not None:
                kwargs["registry"] = self.registry
            self._metrics[cache_key] = metric_type(**kwargs)
        metric = self._metrics[cache_key]
        return metric.labels(**tags) if tags else metric

    def increment(self, name: str, value: float = 1.0, tags: Tags = None) -> None:
        try:
            self._get_or_create(Counter, name, tags).inc(value)
        except ValueError as e:
            logger.error(f"Failed to increment counter {name}: {e}")
            if self.raise_on_error:
                raise

    def observe(self, name: str, value: float, tags: Tags = None) -> None:
        try:
            self._get_or_create(Histogram, name, tags).observe(value)
        except ValueError as e:
            logger.error(f"Failed to observe histogram {name}: {e}")
            if self.raise_on_error:
                raise

    def gauge(self, name: str, value: float, tags: Tags = None) -> None:
        try:
            self._get_or_create(Gauge, name, tags).set(value)
        except ValueError as e:
            logger.error(f"Failed to set gauge {name}: {e}")
            if self.raise_on_error:
                raise


def create_metrics_collector(backend: str | None = None, **kwargs) -> MetricsCollector:
    """Create a metrics collector.

    Args:
        backend: "prometheus" or "noop"; None reads ERROR_TRACKER_METRICS_BACKEND
        **kwargs: Backend-specific arguments

    Raises:
        ValueError: If backend type is unknown
    """
    if backend is None:
        backend = os.getenv("ERROR_TRACKER_METRICS_BACKEND", "noop")

    backend = backend.lower()
    if backend == "prometheus":
        return PrometheusMetricsCollector(**kwargs)
    if backend == "noop":
        return NoOpMetricsCollector(**kwargs)
    raise ValueError(f"Unknown metrics backend: {backend}")
