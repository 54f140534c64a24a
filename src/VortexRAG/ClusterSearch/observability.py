"""
Lightweight observability primitives for cluster loading and search.

The ingress handler, the cluster cache, and the search worker all report
through a shared :class:`Observability` facade:

- Counter, gauge and histogram metrics collection (thread-safe; producers and
  the worker record concurrently)
- Timing spans for cold-cluster loads and batched searches
- Structured logging through ``extra={"event": ...}`` payloads
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Iterable, Iterator, Mapping, MutableMapping, Optional, Tuple

__all__ = (
    "CounterSample",
    "GaugeSample",
    "HistogramSample",
    "MetricsCollector",
    "Observability",
    "TraceRecorder",
)

_LabelKey = Tuple[str, Tuple[Tuple[str, str], ...]]


@dataclass
class CounterSample:
    """Sample from a counter metric with labels and value.

    Examples:
        >>> sample = CounterSample(
        ...     name="cluster_search_queries",
        ...     labels={"cluster": "7"},
        ...     value=12.0
        ... )
    """

    name: str
    labels: Mapping[str, str]
    value: float


@dataclass
class GaugeSample:
    """Most recent value reported for a gauge metric."""

    name: str
    labels: Mapping[str, str]
    value: float


@dataclass
class HistogramSample:
    """Percentile summary of a histogram (batch sizes, span durations).

    Attributes:
        count: Observations recorded so far.
        p50: Median observation.
        p95: 95th percentile observation.
        p99: 99th percentile observation.
    """

    name: str
    labels: Mapping[str, str]
    count: int
    p50: float
    p95: float
    p99: float


class MetricsCollector:
    """In-memory metrics collector compatible with Prometheus-style summaries.

    Examples:
        >>> collector = MetricsCollector()
        >>> collector.increment("cluster_search_queries", amount=4.0)
        >>> collector.observe("cluster_search_batch_size", 4.0)
        >>> [sample.value for sample in collector.export_counters()]
        [4.0]
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: MutableMapping[_LabelKey, float] = defaultdict(float)
        self._gauges: MutableMapping[_LabelKey, float] = {}
        self._histograms: MutableMapping[_LabelKey, list[float]] = defaultdict(list)

    def increment(self, name: str, amount: float = 1.0, **labels: str) -> None:
        """Increase a counter metric by the given amount."""
        key = (name, tuple(sorted(labels.items())))
        with self._lock:
            self._counters[key] += amount

    def set_gauge(self, name: str, value: float, **labels: str) -> None:
        """Record the latest value for a gauge metric."""
        key = (name, tuple(sorted(labels.items())))
        with self._lock:
            self._gauges[key] = float(value)

    def observe(self, name: str, value: float, **labels: str) -> None:
        """Record an observation for a histogram metric."""
        key = (name, tuple(sorted(labels.items())))
        with self._lock:
            self._histograms[key].append(value)

    def counter_value(self, name: str, **labels: str) -> float:
        """Return the current value of a counter (0.0 when never incremented)."""
        key = (name, tuple(sorted(labels.items())))
        with self._lock:
            return self._counters.get(key, 0.0)

    def export_counters(self) -> Iterable[CounterSample]:
        """Iterate over collected counter metrics as structured samples."""
        with self._lock:
            items = list(self._counters.items())
        for (name, labels), value in items:
            yield CounterSample(name=name, labels=dict(labels), value=value)

    def export_gauges(self) -> Iterable[GaugeSample]:
        """Iterate over the latest gauge values."""
        with self._lock:
            items = list(self._gauges.items())
        for (name, labels), value in items:
            yield GaugeSample(name=name, labels=dict(labels), value=value)

    def export_histograms(self) -> Iterable[HistogramSample]:
        """Summarise every non-empty histogram as count plus p50/p95/p99."""
        with self._lock:
            items = [(key, sorted(samples)) for key, samples in self._histograms.items() if samples]
        for (name, labels), ordered in items:
            yield HistogramSample(
                name=name,
                labels=dict(labels),
                count=len(ordered),
                p50=_nearest_rank(ordered, 0.5),
                p95=_nearest_rank(ordered, 0.95),
                p99=_nearest_rank(ordered, 0.99),
            )


class TraceRecorder:
    """Context manager producing timing spans for tracing.

    Examples:
        >>> recorder = TraceRecorder(MetricsCollector(), logging.getLogger("test"))
        >>> with recorder.span("example"):
        ...     pass
    """

    def __init__(self, metrics: MetricsCollector, logger: logging.Logger) -> None:
        self._metrics = metrics
        self._logger = logger

    @contextmanager
    def span(self, name: str, **attributes: str) -> Iterator[None]:
        """Record execution duration for a traced operation.

        Raises:
            Exception: Propagates any exception raised inside the traced block.
        """
        start = time.perf_counter()
        status = "ok"
        try:
            yield
        except Exception:
            status = "error"
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            self._metrics.observe(f"trace_{name}_ms", duration_ms, **attributes)
            payload = {"span": name, "duration_ms": round(duration_ms, 3), "status": status}
            payload.update(attributes)
            self._logger.debug("cluster-search-trace", extra={"event": payload})


class Observability:
    """Facade for metrics, structured logging, and tracing.

    Examples:
        >>> obs = Observability()
        >>> sorted(obs.metrics_snapshot())
        ['counters', 'gauges', 'histograms']
    """

    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self._metrics = MetricsCollector()
        self._logger = logger or logging.getLogger("VortexRAG.ClusterSearch")
        self._tracer = TraceRecorder(self._metrics, self._logger)

    @property
    def metrics(self) -> MetricsCollector:
        """Return the shared metrics collector."""
        return self._metrics

    @property
    def logger(self) -> logging.Logger:
        """Return the structured logger used for observability events."""
        return self._logger

    def trace(self, name: str, **attributes: str) -> Iterator[None]:
        """Create a tracing span that records timing and metadata."""
        return self._tracer.span(name, **attributes)

    def metrics_snapshot(self) -> Dict[str, list[Mapping[str, object]]]:
        """Export a JSON-serializable snapshot of counters, histograms, and gauges."""
        counters = [sample.__dict__ for sample in self._metrics.export_counters()]
        histograms = [sample.__dict__ for sample in self._metrics.export_histograms()]
        gauges = [sample.__dict__ for sample in self._metrics.export_gauges()]
        return {"counters": counters, "histograms": histograms, "gauges": gauges}


def _nearest_rank(ordered: list[float], quantile: float) -> float:
    return ordered[int(quantile * (len(ordered) - 1))]
