"""Metrics collector and tracing span tests."""

from __future__ import annotations

import logging
import threading

import pytest

from VortexRAG.ClusterSearch.observability import MetricsCollector, Observability


def test_counters_are_keyed_by_labels() -> None:
    collector = MetricsCollector()
    collector.increment("cluster_search_requests", status="accepted")
    collector.increment("cluster_search_requests", status="accepted")
    collector.increment("cluster_search_requests", status="malformed_key")

    assert collector.counter_value("cluster_search_requests", status="accepted") == 2.0
    assert collector.counter_value("cluster_search_requests", status="malformed_key") == 1.0
    assert collector.counter_value("cluster_search_requests") == 0.0


def test_concurrent_increments_are_not_lost() -> None:
    collector = MetricsCollector()

    def bump() -> None:
        for _ in range(1000):
            collector.increment("cluster_search_enqueued")

    threads = [threading.Thread(target=bump) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert collector.counter_value("cluster_search_enqueued") == 8000.0


def test_histograms_export_percentiles() -> None:
    collector = MetricsCollector()
    for value in range(1, 101):
        collector.observe("cluster_search_batch_size", float(value))

    (sample,) = list(collector.export_histograms())

    assert sample.count == 100
    assert sample.p50 == 50.0
    assert sample.p99 == 99.0


def test_gauges_keep_latest_value() -> None:
    collector = MetricsCollector()
    collector.set_gauge("cluster_cache_size", 1)
    collector.set_gauge("cluster_cache_size", 3)

    assert [sample.value for sample in collector.export_gauges()] == [3.0]


def test_trace_span_records_duration_and_logs(caplog) -> None:
    observability = Observability(logger=logging.getLogger("tests.cluster_search"))

    with caplog.at_level(logging.DEBUG, logger="tests.cluster_search"):
        with observability.trace("cluster_load", cluster="7"):
            pass

    (record,) = [record for record in caplog.records if record.msg == "cluster-search-trace"]
    assert record.event["span"] == "cluster_load"
    assert record.event["status"] == "ok"
    assert record.event["cluster"] == "7"
    histograms = {sample.name for sample in observability.metrics.export_histograms()}
    assert "trace_cluster_load_ms" in histograms


def test_trace_span_marks_errors_and_reraises(caplog) -> None:
    observability = Observability(logger=logging.getLogger("tests.cluster_search"))

    with caplog.at_level(logging.DEBUG, logger="tests.cluster_search"):
        with pytest.raises(RuntimeError):
            with observability.trace("cluster_search_batch"):
                raise RuntimeError("boom")

    (record,) = [record for record in caplog.records if record.msg == "cluster-search-trace"]
    assert record.event["status"] == "error"


def test_metrics_snapshot_is_serialisable() -> None:
    observability = Observability()
    observability.metrics.increment("cluster_loads")

    snapshot = observability.metrics_snapshot()

    assert snapshot["counters"] == [{"name": "cluster_loads", "labels": {}, "value": 1.0}]
    assert snapshot["histograms"] == []
    assert snapshot["gauges"] == []
