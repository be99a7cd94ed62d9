"""Unit tests for per-connection request handling."""

import socket
import threading

import pytest

from servicebox.domain.response_builders import text_response
from servicebox.lifecycle.state import ServerLifecycle
from servicebox.pipeline.router import RouteTable
from servicebox.transport.context import WorkerContext
from servicebox.transport.worker import handle_client
from tests.utils.http import read_http_response


@pytest.fixture(name="connection")
def _connection():
    """Serve one socket pair end with handle_client in a worker thread."""
    routes = RouteTable()
    routes.add("GET", "/hello", lambda req: text_response("hi", req))
    context = WorkerContext(
        routes=routes, lifecycle=ServerLifecycle(), socket_timeout=2
    )
    server, client = socket.socketpair()
    worker = threading.Thread(
        target=handle_client, args=(server, ("test", 0), context), daemon=True
    )
    context.lifecycle.register_worker(worker)
    client.settimeout(2.0)
    yield client, worker, context
    client.close()
    worker.join(2.0)


def test_keep_alive_serves_multiple_requests(connection):
    """Several requests share one connection until the client closes."""
    client, worker, _context = connection
    worker.start()
    for _ in range(2):
        client.sendall(b"GET /hello HTTP/1.1\r\nHost: t\r\n\r\n")
        response = read_http_response(client)
        assert response.status_code == 200
        assert response.body == b"hi"
        assert "connection" not in response.headers
        assert response.headers["x-request-id"]


def test_handler_error_returns_500(connection):
    """A raising handler yields a 500 and closes the connection."""
    client, worker, context = connection

    def broken(_request):
        raise RuntimeError("boom")

    context.routes.add("GET", "/broken", broken)
    worker.start()
    client.sendall(b"GET /broken HTTP/1.1\r\nHost: t\r\n\r\n")
    response = read_http_response(client)
    assert response.status_code == 500
    assert response.headers["connection"] == "close"
    assert client.recv(1) == b""


def test_malformed_request_returns_400(connection):
    """A garbled request line is answered with 400."""
    client, worker, _context = connection
    worker.start()
    client.sendall(b"NONSENSE\r\n\r\n")
    assert read_http_response(client).status_code == 400


def test_draining_closes_idle_connection(connection):
    """Beginning to drain unblocks a worker waiting for the next request."""
    client, worker, context = connection
    worker.start()
    client.sendall(b"GET /hello HTTP/1.1\r\nHost: t\r\n\r\n")
    assert read_http_response(client).status_code == 200

    context.lifecycle.begin_draining()

    assert client.recv(1) == b""
    worker.join(2.0)
    assert not worker.is_alive()
    assert context.lifecycle.wait_for_workers(1.0)
