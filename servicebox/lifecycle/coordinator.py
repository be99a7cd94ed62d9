"""Ties service cancellation to a bounded shutdown of the web server."""

import threading
from typing import TYPE_CHECKING

from servicebox.bootstrap.logging_setup import component_logger
from servicebox.domain.errors import ServerClosed, ServerNotInitializedError
from servicebox.lifecycle.cancellation import CancellationToken
from servicebox.web.server import WebServer

if TYPE_CHECKING:
    from servicebox.service import Service

COORDINATOR_LOGGER = component_logger("lifecycle.coordinator")

SHUTDOWN_TIMEOUT_SECONDS = 30.0


def _shutdown_when_cancelled(
    token: CancellationToken, web_server: WebServer, timeout: float
) -> None:
    """Wait for cancellation, then shut the listener down within ``timeout``."""
    token.wait()
    COORDINATOR_LOGGER.info(
        "Shutting down web server",
        extra={"event": "shutdown_started", "timeout_seconds": timeout},
    )
    if not web_server.listener.shutdown(timeout):
        COORDINATOR_LOGGER.warning(
            "Graceful shutdown deadline exceeded, abandoning remaining connections",
            extra={"event": "shutdown_abandoned", "timeout_seconds": timeout},
        )


def listen_and_serve(
    service: "Service", shutdown_timeout: float = SHUTDOWN_TIMEOUT_SECONDS
) -> None:
    """Serve the web server until the service is cancelled.

    HTTPS is used when both TLS paths are configured. A deliberate shutdown
    ends with ``ServerClosed``; any other listener error propagates
    unchanged. The service is cancelled on every exit path.
    """
    web_server = service.web_server
    if web_server is None:
        raise ServerNotInitializedError()

    watcher = threading.Thread(
        target=_shutdown_when_cancelled,
        args=(service.cancellation, web_server, shutdown_timeout),
        name="servicebox-shutdown-watcher",
        daemon=True,
    )
    watcher.start()

    config = service.config
    try:
        if config.tls_enabled:
            web_server.listener.start_tls(
                config.listen_address, config.tls_cert_file, config.tls_key_file
            )
        else:
            web_server.listener.start(config.listen_address)
    except ServerClosed:
        service.cancel()
        watcher.join(shutdown_timeout)
        raise
    finally:
        service.cancel()
