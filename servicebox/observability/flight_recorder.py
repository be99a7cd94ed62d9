"""In-memory flight recorder of recent OpenTelemetry spans."""

import gzip
import json
import threading
from collections import deque
from typing import Any, BinaryIO, Sequence

from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    SimpleSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from opentelemetry.trace import SpanKind

from servicebox.bootstrap.logging_setup import component_logger, current_correlation_id
from servicebox.domain.http_types import Handler, HttpRequest, HttpResponse

RECORDER_LOGGER = component_logger("observability.flight_recorder")

DEFAULT_MAX_EVENTS = 10_000
TRACER_NAME = "servicebox.flight_recorder"


def span_to_event(span: ReadableSpan) -> dict[str, Any]:
    """Flatten a finished span into a JSON-friendly event."""
    start_ns = span.start_time or 0
    end_ns = span.end_time or start_ns
    event: dict[str, Any] = {
        "name": span.name,
        "trace_id": format(span.context.trace_id, "032x"),
        "span_id": format(span.context.span_id, "016x"),
        "parent_span_id": (
            format(span.parent.span_id, "016x") if span.parent is not None else None
        ),
        "kind": span.kind.name,
        "start_ns": start_ns,
        "end_ns": end_ns,
        "duration_ns": end_ns - start_ns,
        "span_status": span.status.status_code.name,
    }
    if span.events:
        event["span_events"] = [span_event.name for span_event in span.events]
    event.update(dict(span.attributes or {}))
    return event


class FlightRecorder(SpanExporter):
    """Keeps the most recent finished spans in a bounded ring buffer.

    The recorder owns a tracer provider whose ``SimpleSpanProcessor`` hands
    every finished span straight to ``export``. Spans are only kept while
    the recorder is running. ``write_to`` serializes a snapshot as
    gzip-compressed JSON lines.
    """

    def __init__(
        self, max_events: int = DEFAULT_MAX_EVENTS, service_name: str = "servicebox"
    ) -> None:
        if max_events < 1:
            raise ValueError("max_events must be at least 1")
        self.max_events = max_events
        self._lock = threading.Lock()
        self._events: deque[dict[str, Any]] = deque(maxlen=max_events)
        self._running = False
        self.provider = TracerProvider(
            resource=Resource.create({SERVICE_NAME: service_name}),
            shutdown_on_exit=False,
        )
        self.provider.add_span_processor(SimpleSpanProcessor(self))
        self.tracer = self.provider.get_tracer(TRACER_NAME)

    @property
    def running(self) -> bool:
        """Return True between ``start`` and ``stop``."""
        with self._lock:
            return self._running

    def start(self) -> None:
        """Begin recording spans."""
        with self._lock:
            if self._running:
                raise RuntimeError("flight recorder already started")
            self._running = True
        RECORDER_LOGGER.debug(
            "Flight recorder started",
            extra={"event": "recorder_started", "max_events": self.max_events},
        )

    def stop(self) -> None:
        """Stop recording; buffered spans are kept."""
        with self._lock:
            self._running = False
        RECORDER_LOGGER.debug(
            "Flight recorder stopped", extra={"event": "recorder_stopped"}
        )

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        events = [span_to_event(span) for span in spans]
        with self._lock:
            if self._running:
                self._events.extend(events)
        return SpanExportResult.SUCCESS

    def shutdown(self) -> None:
        self.stop()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        # Spans are buffered synchronously in export.
        return True

    def record(self, name: str, **attributes: Any) -> None:
        """Record an instantaneous span carrying ``attributes``."""
        with self.tracer.start_as_current_span(name, attributes=attributes):
            pass

    def snapshot(self) -> list[dict[str, Any]]:
        """Return a copy of the buffered events, oldest first."""
        with self._lock:
            return list(self._events)

    def write_to(self, stream: BinaryIO) -> int:
        """Write the current buffer to ``stream`` and return the bytes written.

        Buffered spans are written whether or not the recorder is still
        running; callers decide whether an export is allowed.
        """
        lines = "".join(
            json.dumps(event, sort_keys=True, default=str) + "\n"
            for event in self.snapshot()
        )
        payload = gzip.compress(lines.encode())
        stream.write(payload)
        return len(payload)

    def middleware(self, next_handler: Handler) -> Handler:
        """Wrap a handler so every request runs inside a server span."""

        def trace(request: HttpRequest) -> HttpResponse:
            attributes: dict[str, Any] = {
                "method": request.method,
                "route": request.route,
                "thread": threading.current_thread().name,
            }
            correlation_id = current_correlation_id()
            if correlation_id is not None:
                attributes["correlation_id"] = correlation_id

            with self.tracer.start_as_current_span(
                "http.request", kind=SpanKind.SERVER, attributes=attributes
            ) as span:
                status = 500
                try:
                    response = next_handler(request)
                    status = response.status_code
                    return response
                finally:
                    span.set_attribute("status", status)

        return trace
