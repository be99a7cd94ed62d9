"""Listener lifecycle state and worker thread tracking."""

import socket
import threading
import time

from servicebox.bootstrap.logging_setup import component_logger

LIFECYCLE_LOGGER = component_logger("lifecycle.state")


class ServerLifecycle:
    """Manages draining state, worker threads and idle keep-alive sockets."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._draining_event = threading.Event()
        self._workers: set[threading.Thread] = set()
        self._idle: set[socket.socket] = set()

    def should_stop(self) -> bool:
        """Check if the listener should stop accepting new connections."""
        return self._stop_event.is_set()

    def is_draining(self) -> bool:
        """Check if the listener is in draining mode."""
        return self._draining_event.is_set()

    def register_worker(self, thread: threading.Thread) -> None:
        """Register a worker thread for tracking."""
        with self._lock:
            self._workers.add(thread)

    def cleanup_worker(self, thread: threading.Thread) -> None:
        """Remove a worker thread from tracking."""
        with self._lock:
            self._workers.discard(thread)

    def has_worker(self, thread: threading.Thread) -> bool:
        """Return True when the worker is currently tracked."""
        with self._lock:
            return thread in self._workers

    def active_worker_count(self) -> int:
        """Return the number of currently tracked worker threads."""
        with self._lock:
            return len(self._workers)

    def mark_idle(self, client_socket: socket.socket) -> bool:
        """Record that a connection waits for its next request.

        Returns False once draining started; the caller should close the
        connection instead of waiting.
        """
        with self._lock:
            if self._draining_event.is_set():
                return False
            self._idle.add(client_socket)
            return True

    def mark_active(self, client_socket: socket.socket) -> None:
        """Record that a connection is processing a request."""
        with self._lock:
            self._idle.discard(client_socket)

    def begin_draining(self) -> None:
        """Stop accepting and unblock connections idling between requests."""
        with self._lock:
            self._draining_event.set()
            self._stop_event.set()
            idle = list(self._idle)
            self._idle.clear()
        for client_socket in idle:
            try:
                client_socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        LIFECYCLE_LOGGER.info(
            "Beginning graceful shutdown",
            extra={"event": "draining_started", "idle_connections": len(idle)},
        )

    def wait_for_workers(self, timeout: float) -> bool:
        """Wait for all worker threads to complete within the timeout."""
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                self._workers = {w for w in self._workers if w.is_alive()}
                active_workers = list(self._workers)
            if not active_workers:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Shutdown timeout exceeded",
                    extra={
                        "event": "shutdown_timeout",
                        "remaining_workers": len(active_workers),
                    },
                )
                return False
            for worker in active_workers:
                worker.join(timeout=min(0.1, remaining))
                if time.monotonic() >= deadline:
                    break
