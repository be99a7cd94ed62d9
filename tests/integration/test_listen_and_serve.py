"""Integration tests for serving probes and shutting down on cancellation."""

# pylint: disable=redefined-outer-name

import gzip
import json
import socket
import threading
import time

import pytest

from servicebox.bootstrap.config import ConfigPatch
from servicebox.domain.errors import ServerClosed
from servicebox.domain.response_builders import text_response
from servicebox.lifecycle.coordinator import listen_and_serve
from servicebox.options import EnableServer, EnableTracing, OverrideReadiness, SetConfig
from servicebox.service import new_service
from tests.utils.http import http_request, read_http_response


def test_healthz_returns_200_with_empty_body(serve):
    """Default probes answer 200 with no body and security headers."""
    serving = serve(EnableServer())
    for path in ("/healthz", "/readyz"):
        response = http_request(serving.host, serving.port, path)
        assert response.status_line == "HTTP/1.1 200 OK"
        assert response.body == b""
        assert "strict-transport-security" in response.headers


def test_readiness_override_is_served(serve):
    """A custom readiness handler replaces the default."""
    serving = serve(
        EnableServer(),
        OverrideReadiness(lambda req: text_response("warming up", req)),
    )
    response = http_request(serving.host, serving.port, "/readyz")
    assert response.body == b"warming up"


def test_application_route_added_after_build(serve):
    """Routes registered on the running server are reachable."""
    serving = serve(EnableServer())
    serving.service.web_server.get("/", lambda req: text_response("Hello!", req))
    assert http_request(serving.host, serving.port, "/").body == b"Hello!"
    assert http_request(serving.host, serving.port, "/nope").status_code == 404


def test_request_id_is_echoed(serve):
    """An incoming X-Request-ID is returned on the response."""
    serving = serve(EnableServer())
    response = http_request(
        serving.host, serving.port, "/healthz", headers={"X-Request-ID": "abc-123"}
    )
    assert response.headers["x-request-id"] == "abc-123"


def test_metrics_endpoint_counts_requests(serve):
    """Served requests show up in the Prometheus exposition."""
    serving = serve(EnableServer())
    http_request(serving.host, serving.port, "/healthz")
    response = http_request(serving.host, serving.port, "/metrics")
    assert response.status_code == 200
    assert (
        b'http_requests_total{method="GET",route="/healthz",status="200"} 1.0'
        in response.body
    )


def test_tracez_disabled_without_tracing(serve):
    """The trace endpoint reports 503 when tracing is off."""
    serving = serve(EnableServer())
    response = http_request(serving.host, serving.port, "/tracez")
    assert response.status_code == 503
    assert response.body == b"flight recorder disabled"


def test_tracez_exports_recorded_requests(serve):
    """With tracing, earlier requests appear in the exported snapshot."""
    serving = serve(EnableServer(), EnableTracing())
    http_request(serving.host, serving.port, "/healthz")
    response = http_request(serving.host, serving.port, "/tracez")
    assert response.status_code == 200
    events = [json.loads(line) for line in gzip.decompress(response.body).splitlines()]
    assert any(
        event["name"] == "http.request" and event["route"] == "/healthz"
        for event in events
    )


def test_cancel_ends_with_server_closed(serve):
    """Cancelling the service stops serving with ServerClosed."""
    serving = serve(EnableServer())
    started = time.monotonic()
    error = serving.stop()
    assert isinstance(error, ServerClosed)
    assert time.monotonic() - started < 3.0
    assert not serving.thread.is_alive()
    with pytest.raises(OSError):
        socket.create_connection((serving.host, serving.port), timeout=0.5)


def test_cancel_closes_idle_keep_alive_connection(serve):
    """Idle keep-alive connections do not hold up shutdown."""
    serving = serve(EnableServer())
    with socket.create_connection((serving.host, serving.port), timeout=2.0) as sock:
        sock.sendall(b"GET /healthz HTTP/1.1\r\nHost: localhost\r\n\r\n")
        assert read_http_response(sock).status_code == 200

        started = time.monotonic()
        assert isinstance(serving.stop(), ServerClosed)
        assert time.monotonic() - started < 3.0
        assert sock.recv(1) == b""


def test_in_flight_request_completes_during_shutdown(serve):
    """A request being handled at cancellation still gets its response."""
    entered = threading.Event()

    def slow(request):
        entered.set()
        time.sleep(0.3)
        return text_response("done", request)

    serving = serve(EnableServer())
    serving.service.web_server.get("/slow", slow)
    responses = []
    client = threading.Thread(
        target=lambda: responses.append(
            http_request(serving.host, serving.port, "/slow", timeout=5.0)
        )
    )
    client.start()
    assert entered.wait(2.0)

    assert isinstance(serving.stop(), ServerClosed)
    client.join(5.0)

    assert responses[0].body == b"done"
    assert responses[0].headers["connection"] == "close"


def test_shutdown_deadline_abandons_stuck_handler(serve):
    """Handlers outliving the deadline are abandoned, not awaited."""
    entered = threading.Event()
    release = threading.Event()

    def stuck(request):
        entered.set()
        release.wait(10.0)
        return text_response("late", request)

    serving = serve(EnableServer(), shutdown_timeout=0.3)
    serving.service.web_server.get("/stuck", stuck)
    client = threading.Thread(
        target=http_request,
        args=(serving.host, serving.port, "/stuck"),
        kwargs={"timeout": 10.0},
        daemon=True,
    )
    client.start()
    try:
        assert entered.wait(2.0)
        started = time.monotonic()
        assert isinstance(serving.stop(), ServerClosed)
        assert time.monotonic() - started < 2.0
    finally:
        release.set()


def test_bind_failure_propagates_and_cancels():
    """A port already in use is returned unchanged and cancels the service."""
    with socket.create_server(("127.0.0.1", 0)) as occupied:
        port = occupied.getsockname()[1]
        service = new_service(
            SetConfig(ConfigPatch(listen_address=f"127.0.0.1:{port}")),
            EnableServer(),
            handle_signals=False,
        )
        with pytest.raises(OSError):
            listen_and_serve(service, shutdown_timeout=1.0)
    assert service.cancellation.cancelled
