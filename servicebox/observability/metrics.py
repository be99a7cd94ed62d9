"""Prometheus request metrics and the exposition handler."""

import time
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from servicebox.domain.http_types import Handler, HttpRequest, HttpResponse
from servicebox.domain.response_builders import blob_response

METRICS_PATH = "/metrics"


class RequestMetrics:
    """Request counters and latency histograms bound to one registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self.requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests processed",
            ["method", "route", "status"],
            registry=self.registry,
        )
        self.request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request processing time",
            ["method", "route"],
            registry=self.registry,
        )
        self.requests_in_flight = Gauge(
            "http_requests_in_flight",
            "HTTP requests currently being processed",
            registry=self.registry,
        )

    def middleware(self, next_handler: Handler) -> Handler:
        """Wrap a handler so every request is counted and timed."""

        def observe(request: HttpRequest) -> HttpResponse:
            started = time.perf_counter()
            status = "500"
            self.requests_in_flight.inc()
            try:
                response = next_handler(request)
                status = str(response.status_code)
                return response
            finally:
                self.requests_in_flight.dec()
                self.request_duration.labels(request.method, request.route).observe(
                    time.perf_counter() - started
                )
                self.requests_total.labels(request.method, request.route, status).inc()

        return observe

    def handler(self, request: HttpRequest) -> HttpResponse:
        """Serve the registry in the Prometheus text exposition format."""
        payload = generate_latest(self.registry)
        return blob_response(payload, CONTENT_TYPE_LATEST, request)
