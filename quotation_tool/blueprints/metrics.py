"""
Prometheus metrics blueprint.

Serves /metrics with HTTP request metrics and the quotation workflow
counters. Restrict it to the monitoring network.
"""
import os
import time

from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers write to PROMETHEUS_MULTIPROC_DIR and are merged at scrape time
MULTIPROCESS_MODE = 'PROMETHEUS_MULTIPROC_DIR' in os.environ

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
    _metric_registry = None
else:
    registry = REGISTRY
    _metric_registry = REGISTRY

LATENCY_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

# Workflow
quotation_transitions_total = Counter(
    'quotation_transitions_total',
    'Quotation status transitions committed',
    ['from_status', 'to_status'],
    registry=_metric_registry
)

notifications_dispatched_total = Counter(
    'notifications_dispatched_total',
    'Notification side effects handled by the dispatcher',
    ['channel', 'outcome'],
    registry=_metric_registry
)

# HTTP
http_requests_total = Counter(
    'http_requests_total',
    'HTTP requests by endpoint and status code',
    ['method', 'endpoint', 'http_status'],
    registry=_metric_registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_metric_registry,
    buckets=LATENCY_BUCKETS
)

http_requests_in_flight = Gauge(
    'http_requests_in_flight',
    'HTTP requests being served',
    registry=_metric_registry
)


def record_transition(from_status: str, to_status: str) -> None:
    quotation_transitions_total.labels(from_status=from_status, to_status=to_status).inc()


def record_notification(channel: str, outcome: str) -> None:
    notifications_dispatched_total.labels(channel=channel, outcome=outcome).inc()


def setup_metrics_instrumentation(app):
    """Register request hooks that feed the HTTP metrics."""

    @app.before_request
    def start_request_timer():
        g.request_started_at = time.perf_counter()
        http_requests_in_flight.inc()

    @app.after_request
    def observe_request(response):
        started = g.pop('request_started_at', None)
        if started is None:
            return response

        endpoint = request.endpoint or 'unknown'
        try:
            http_request_duration_seconds.labels(request.method, endpoint).observe(time.perf_counter() - started)
            http_requests_total.labels(request.method, endpoint, response.status_code).inc()
        except Exception as e:
            app.logger.warning(f"Failed to record metrics for {endpoint}: {e}")
        finally:
            http_requests_in_flight.dec()
        return response


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus scrape endpoint (unauthenticated)."""
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
