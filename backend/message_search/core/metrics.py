"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "msgs_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

SEARCH_LATENCY = Histogram(
    "msgs_search_latency_seconds",
    "Latency of owner-scoped similarity searches",
    labelnames=("strategy",),
    registry=REGISTRY,
)

SYNC_RUNS = Counter(
    "msgs_sync_runs_total",
    "Finished sync runs by outcome",
    labelnames=("source", "outcome"),
    registry=REGISTRY,
)

SYNC_DURATION = Histogram(
    "msgs_sync_duration_seconds",
    "Sync run duration",
    labelnames=("source",),
    registry=REGISTRY,
)

MESSAGES_INGESTED = Counter(
    "msgs_messages_total",
    "Messages seen by the ingestion pipeline",
    labelnames=("source", "status"),
    registry=REGISTRY,
)

EMBEDDING_FAILURES = Counter(
    "msgs_embedding_failures_total",
    "Chunks left without an embedding",
    labelnames=("reason",),
    registry=REGISTRY,
)

PROVIDER_RETRIES = Counter(
    "msgs_provider_retries_total",
    "Retried provider calls",
    labelnames=("operation",),
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "msgs_index_vectors",
    "Number of vectors held across loaded index partitions",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "SEARCH_LATENCY",
    "SYNC_RUNS",
    "SYNC_DURATION",
    "MESSAGES_INGESTED",
    "EMBEDDING_FAILURES",
    "PROVIDER_RETRIES",
    "INDEX_SIZE",
    "metrics_response",
]
