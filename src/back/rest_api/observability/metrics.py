"""Prometheus metrics for rest-api.

Usage::

    from rest_api.observability.metrics import SCRIPT_INVOCATIONS_TOTAL

    SCRIPT_INVOCATIONS_TOTAL.labels(kind='api', outcome='ok').inc()
"""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    'http_server_requests_total',
    'Total HTTP requests by method, path pattern, and status code.',
    labelnames=['method', 'path', 'status'],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    'http_server_request_duration_seconds',
    'HTTP request latency in seconds.',
    labelnames=['method', 'path'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_FLIGHT = Gauge(
    'http_server_requests_in_flight',
    'Number of HTTP requests currently being processed.',
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Dispatch metrics
# ---------------------------------------------------------------------------

AUTH_ATTEMPTS_TOTAL = Counter(
    'rest_api_auth_attempts_total',
    'Identity resolution outcomes.',
    labelnames=['outcome'],
    registry=REGISTRY,
)

SCRIPT_INVOCATIONS_TOTAL = Counter(
    'rest_api_script_invocations_total',
    'Script invocations by script kind and outcome.',
    labelnames=['kind', 'outcome'],
    registry=REGISTRY,
)

SCRIPT_DURATION_SECONDS = Histogram(
    'rest_api_script_duration_seconds',
    'Script handler latency in seconds.',
    labelnames=['kind'],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0),
    registry=REGISTRY,
)

CONFIG_RELOADS_TOTAL = Counter(
    'rest_api_config_reloads_total',
    'Configuration generation swaps by outcome.',
    labelnames=['outcome'],
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
