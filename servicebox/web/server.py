"""Web server facade: listener plus probe, metrics and trace endpoints."""

import io
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from prometheus_client import CollectorRegistry

from servicebox.bootstrap.logging_setup import component_logger
from servicebox.domain.http_types import Handler, HttpRequest, HttpResponse, Middleware
from servicebox.domain.response_builders import (
    blob_response,
    no_content_response,
    service_unavailable_response,
)
from servicebox.observability.flight_recorder import FlightRecorder
from servicebox.observability.metrics import METRICS_PATH, RequestMetrics
from servicebox.transport.listener import HttpListener

WEB_LOGGER = component_logger("web.server")

LIVENESS_PATH = "/healthz"
READINESS_PATH = "/readyz"
TRACEZ_PATH = "/tracez"
TRACE_CONTENT_TYPE = "application/octet-stream"


def default_probe(request: HttpRequest) -> HttpResponse:
    """Answer a probe with 200 and an empty body."""
    return no_content_response(request)


@dataclass
class WebServer:
    """The service's HTTP listener together with its probe handlers."""

    listener: HttpListener
    liveness_probe: Handler = default_probe
    readiness_probe: Handler = default_probe
    metrics: Optional[RequestMetrics] = None

    def get(self, path: str, handler: Handler) -> None:
        """Register an application GET route."""
        self.listener.get(path, handler)

    def use(self, middleware: Middleware) -> None:
        """Wrap every route in ``middleware``."""
        self.listener.use(middleware)

    def set_liveness_probe(self, handler: Handler) -> None:
        """Replace the liveness handler served at /healthz."""
        self.liveness_probe = handler
        self.listener.get(LIVENESS_PATH, handler)

    def set_readiness_probe(self, handler: Handler) -> None:
        """Replace the readiness handler served at /readyz."""
        self.readiness_probe = handler
        self.listener.get(READINESS_PATH, handler)


def create_web_server(
    metrics: bool = True, registry: Optional[CollectorRegistry] = None
) -> WebServer:
    """Create a listener with default probes and optional metrics."""
    web_server = WebServer(listener=HttpListener())
    web_server.set_liveness_probe(default_probe)
    web_server.set_readiness_probe(default_probe)

    if metrics:
        web_server.metrics = RequestMetrics(registry)
        web_server.listener.use(web_server.metrics.middleware)
        web_server.listener.get(METRICS_PATH, web_server.metrics.handler)

    WEB_LOGGER.debug(
        "Web server created",
        extra={"event": "web_server_created", "fields": {"metrics": metrics}},
    )
    return web_server


def trace_snapshot_handler(
    recorder_source: Callable[[], Optional[FlightRecorder]], lock: threading.Lock
) -> Handler:
    """Build the /tracez handler exporting the flight recorder buffer.

    Exports are serialized through ``lock``, and the recorder is checked
    once under it; a recorder stopping mid-export still yields the
    snapshot. A failure while writing propagates out of the handler.
    """

    def export(request: HttpRequest) -> HttpResponse:
        buffer = io.BytesIO()
        with lock:
            recorder = recorder_source()
            if recorder is None or not recorder.running:
                return service_unavailable_response(
                    request, "flight recorder disabled"
                )
            recorder.write_to(buffer)
        return blob_response(
            buffer.getvalue(),
            TRACE_CONTENT_TYPE,
            request,
            {"Content-Disposition": 'attachment; filename="trace.jsonl.gz"'},
        )

    return export
