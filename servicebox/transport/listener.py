"""Threaded HTTP/1.1 listener exposing start, start_tls and shutdown."""

import socket
import ssl
import threading
from typing import Optional

from servicebox.bootstrap.environment import env_int
from servicebox.bootstrap.logging_setup import component_logger
from servicebox.bootstrap.socket_factory import create_server_socket, create_tls_context
from servicebox.domain.errors import ServerClosed
from servicebox.domain.http_types import Handler, Middleware
from servicebox.lifecycle.state import ServerLifecycle
from servicebox.pipeline.router import RouteTable
from servicebox.transport.accept_loop import run_accept_loop
from servicebox.transport.context import WorkerContext

LISTENER_LOGGER = component_logger("transport.listener")

DEFAULT_SOCKET_TIMEOUT = env_int("SERVICEBOX_SOCKET_TIMEOUT", 60)


class HttpListener:
    """Serves a route table over plain TCP or TLS until shut down.

    ``start`` and ``start_tls`` block the calling thread and always end by
    raising: ``ServerClosed`` after ``shutdown``, or the socket/TLS error
    that prevented serving. A listener cannot be restarted.
    """

    def __init__(self, socket_timeout: float = DEFAULT_SOCKET_TIMEOUT) -> None:
        self.routes = RouteTable()
        self.lifecycle = ServerLifecycle()
        self.socket_timeout = socket_timeout
        self.listening = threading.Event()
        self._lock = threading.Lock()
        self._server_socket: Optional[socket.socket] = None

    def add(self, method: str, path: str, handler: Handler) -> None:
        """Register a handler for ``method`` requests to ``path``."""
        self.routes.add(method, path, handler)

    def get(self, path: str, handler: Handler) -> None:
        """Register a GET handler for ``path``."""
        self.routes.add("GET", path, handler)

    def use(self, middleware: Middleware) -> None:
        """Wrap every route in ``middleware``."""
        self.routes.use(middleware)

    @property
    def bound_address(self) -> Optional[tuple]:
        """Return the socket address while listening."""
        with self._lock:
            if self._server_socket is None:
                return None
            return self._server_socket.getsockname()

    def start(self, address: str) -> None:
        """Serve plain HTTP on ``address`` until shut down."""
        self._serve(address, None)

    def start_tls(self, address: str, cert_file: str, key_file: str) -> None:
        """Serve HTTPS on ``address`` until shut down."""
        self._serve(address, create_tls_context(cert_file, key_file))

    def _serve(self, address: str, tls_context: Optional[ssl.SSLContext]) -> None:
        if self.lifecycle.should_stop():
            raise ServerClosed()

        server_socket = create_server_socket(address)
        with self._lock:
            if self._server_socket is not None:
                server_socket.close()
                raise RuntimeError("listener is already serving")
            if self.lifecycle.should_stop():
                server_socket.close()
                raise ServerClosed()
            self._server_socket = server_socket

        self._announce(address, tls_context is not None)
        self.listening.set()
        context = WorkerContext(
            routes=self.routes,
            lifecycle=self.lifecycle,
            socket_timeout=self.socket_timeout,
            tls_context=tls_context,
        )
        try:
            run_accept_loop(server_socket, context)
        finally:
            self._close_listener()
        raise ServerClosed()

    def _announce(self, address: str, tls: bool) -> None:
        LISTENER_LOGGER.info(
            "Server listening for connections",
            extra={"event": "server_listening", "listen_address": address, "tls": tls},
        )

    def _close_listener(self) -> None:
        with self._lock:
            server_socket, self._server_socket = self._server_socket, None
        if server_socket is None:
            return
        try:
            server_socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        server_socket.close()

    def shutdown(self, timeout: float) -> bool:
        """Stop accepting, close idle connections and wait for active ones.

        Returns False when workers were still running at the deadline; they
        are abandoned.
        """
        self.lifecycle.begin_draining()
        self._close_listener()
        completed = self.lifecycle.wait_for_workers(timeout)
        LISTENER_LOGGER.info(
            "Server shutdown complete" if completed else "Server shutdown abandoned",
            extra={"event": "server_stopped", "timeout_seconds": timeout},
        )
        return completed
