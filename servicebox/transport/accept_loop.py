"""Main connection acceptance loop."""

import itertools
import logging
import socket
import threading

from servicebox.bootstrap.logging_setup import component_logger
from servicebox.transport.context import WorkerContext
from servicebox.transport.worker import handle_client

ACCEPT_LOGGER = component_logger("transport.accept")

_worker_ids = itertools.count(1)


def _start_worker(
    client_socket: socket.socket,
    client_address: tuple,
    context: WorkerContext,
) -> None:
    """Hand a newly accepted connection to its own worker thread."""
    if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
        ACCEPT_LOGGER.debug(
            "Client connection accepted",
            extra={
                "event": "client_accepted",
                "client": f"{client_address[0]}:{client_address[1]}",
            },
        )
    # daemon workers: a shutdown that hits its deadline abandons them
    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, context),
        name=f"servicebox-worker-{next(_worker_ids)}",
        daemon=True,
    )
    context.lifecycle.register_worker(thread)
    thread.start()


def run_accept_loop(server_socket: socket.socket, context: WorkerContext) -> None:
    """Accept connections until the lifecycle asks the listener to stop."""
    lifecycle = context.lifecycle
    while not lifecycle.should_stop():
        try:
            client_socket, client_address = server_socket.accept()
        except socket.timeout:
            continue
        except OSError as error:
            if lifecycle.should_stop():
                break
            ACCEPT_LOGGER.error(
                "Socket accept failed",
                extra={"event": "accept_error", "error_type": type(error).__name__},
            )
            continue

        if lifecycle.should_stop():
            client_socket.close()
            break

        _start_worker(client_socket, client_address, context)
