"""Worker thread logic for handling individual client connections."""

import logging
import socket
import threading
from dataclasses import dataclass
from typing import Optional

from servicebox.bootstrap.logging_setup import (
    bind_correlation_id,
    clear_correlation_id,
    component_logger,
    new_correlation_id,
)
from servicebox.bootstrap.socket_factory import wrap_client_socket
from servicebox.domain.http_types import HttpRequest, HttpResponse
from servicebox.domain.response_builders import (
    bad_request_response,
    entity_too_large_response,
    internal_error_response,
)
from servicebox.pipeline.io import (
    MAX_BODY_BYTES,
    RequestEntityTooLarge,
    receive_request,
    send_response,
)
from servicebox.transport.context import WorkerContext

WORKER_LOGGER = component_logger("transport.worker")


@dataclass
class _WorkerResources:
    thread: threading.Thread
    client_socket: socket.socket
    client_addr_str: str


def _read_next_request(
    client_socket: socket.socket,
    buffer: bytes,
    context: WorkerContext,
    client_addr_str: str,
) -> tuple[Optional[HttpRequest], bytes]:
    """Wait for and parse the next request, answering protocol errors directly."""
    if not buffer:
        if not context.lifecycle.mark_idle(client_socket):
            return None, b""
        try:
            buffer = client_socket.recv(4096)
        finally:
            context.lifecycle.mark_active(client_socket)
        if not buffer:
            return None, b""

    try:
        return receive_request(client_socket, buffer)
    except RequestEntityTooLarge:
        WORKER_LOGGER.warning(
            "Request body size exceeded limit",
            extra={
                "event": "body_size_exceeded",
                "client": client_addr_str,
                "limit": MAX_BODY_BYTES,
            },
        )
        send_response(client_socket, entity_too_large_response())
    except (ValueError, UnicodeDecodeError):
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={"event": "malformed_request", "client": client_addr_str},
        )
        send_response(client_socket, bad_request_response())
    return None, b""


def _dispatch(request: HttpRequest, context: WorkerContext) -> HttpResponse:
    """Route the request, converting handler failures into a 500."""
    try:
        response = context.routes.dispatch(request)
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Handler raised an error",
            extra={
                "event": "handler_error",
                "route": request.route,
                "error_type": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )
        response = internal_error_response()
    if context.lifecycle.is_draining():
        response.close_connection = True
    return response


def _cleanup_worker(context: WorkerContext, resources: _WorkerResources) -> None:
    context.lifecycle.mark_active(resources.client_socket)
    context.lifecycle.cleanup_worker(resources.thread)

    try:
        resources.client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    resources.client_socket.close()

    if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
        WORKER_LOGGER.debug(
            "Socket closed",
            extra={"event": "socket_closed", "client": resources.client_addr_str},
        )
    clear_correlation_id()


def handle_client(
    client_socket: socket.socket,
    client_address: tuple,
    context: WorkerContext,
) -> None:
    """Process requests on a client socket until the connection is closed."""
    buffer = b""
    current_thread = threading.current_thread()
    client_addr_str = f"{client_address[0]}:{client_address[1]}"
    resources = _WorkerResources(current_thread, client_socket, client_addr_str)

    try:
        client_socket.settimeout(context.socket_timeout)
        client_socket = wrap_client_socket(client_socket, context.tls_context)
        resources.client_socket = client_socket

        while not context.lifecycle.is_draining():
            bind_correlation_id(new_correlation_id())

            request, buffer = _read_next_request(
                client_socket, buffer, context, client_addr_str
            )
            if request is None:
                break

            response = _dispatch(request, context)
            send_response(client_socket, response)

            if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
                WORKER_LOGGER.debug(
                    "Request processing complete",
                    extra={
                        "event": "request_complete",
                        "client": client_addr_str,
                        "method": request.method,
                        "route": request.path,
                        "status_code": response.status_code,
                    },
                )
            clear_correlation_id()

            if response.close_connection:
                break
    except (ConnectionError, TimeoutError, OSError) as error:
        # idle sockets are shut down from under the worker while draining
        log = (
            WORKER_LOGGER.debug
            if context.lifecycle.is_draining()
            else WORKER_LOGGER.error
        )
        log(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
    finally:
        _cleanup_worker(context, resources)
