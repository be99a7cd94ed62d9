"""Unit tests for listen_and_serve protocol selection and error handling."""

import pytest

from servicebox.bootstrap.config import Config
from servicebox.domain.errors import ServerClosed, ServerNotInitializedError
from servicebox.lifecycle.coordinator import listen_and_serve
from servicebox.service import Service
from servicebox.transport.listener import HttpListener
from servicebox.web.server import create_web_server


@pytest.fixture(name="calls")
def _calls(monkeypatch):
    """Replace the blocking listener entry points with recorders."""
    recorded = []

    def fake_start(self, address):
        recorded.append(("start", address))
        raise ServerClosed()

    def fake_start_tls(self, address, cert_file, key_file):
        recorded.append(("start_tls", address, cert_file, key_file))
        raise ServerClosed()

    monkeypatch.setattr(HttpListener, "start", fake_start)
    monkeypatch.setattr(HttpListener, "start_tls", fake_start_tls)
    return recorded


def _service(**config) -> Service:
    return Service(
        config=Config(listen_address=":9000", **config),
        web_server=create_web_server(metrics=False),
    )


def test_requires_web_server():
    """Serving without a web server is an error."""
    service = Service()
    with pytest.raises(ServerNotInitializedError):
        listen_and_serve(service)


def test_plain_http_without_tls(calls):
    """No TLS paths means plain HTTP."""
    service = _service()
    with pytest.raises(ServerClosed):
        listen_and_serve(service, shutdown_timeout=1.0)
    assert calls == [("start", ":9000")]
    assert service.cancellation.cancelled


def test_certificate_alone_is_plain_http(calls):
    """A certificate without a key does not enable TLS."""
    with pytest.raises(ServerClosed):
        listen_and_serve(_service(tls_cert_file="cert.pem"), shutdown_timeout=1.0)
    assert calls == [("start", ":9000")]


def test_tls_when_both_paths_set(calls):
    """Certificate and key together select HTTPS."""
    with pytest.raises(ServerClosed):
        listen_and_serve(
            _service(tls_cert_file="cert.pem", tls_key_file="key.pem"),
            shutdown_timeout=1.0,
        )
    assert calls == [("start_tls", ":9000", "cert.pem", "key.pem")]


def test_listener_error_propagates_unchanged(monkeypatch):
    """Errors other than ServerClosed reach the caller as raised."""
    error = OSError(98, "Address already in use")

    def failing_start(self, address):
        raise error

    monkeypatch.setattr(HttpListener, "start", failing_start)
    service = _service()
    with pytest.raises(OSError) as excinfo:
        listen_and_serve(service, shutdown_timeout=1.0)
    assert excinfo.value is error
    assert service.cancellation.cancelled
