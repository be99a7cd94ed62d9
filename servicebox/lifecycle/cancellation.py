"""One-shot cancellation token, optionally bound to termination signals."""

import signal
import threading
from typing import Callable, Iterable, Optional

from servicebox.bootstrap.logging_setup import component_logger

CANCEL_LOGGER = component_logger("lifecycle.cancellation")

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CancellationToken:
    """A process-lifetime cancellation signal that fires exactly once."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._previous_handlers: dict[int, object] = {}
        # Only the signal handler and the relay thread touch these two.
        self._signal_name: Optional[str] = None
        self._signalled = threading.Event()

    @classmethod
    def bound_to_signals(
        cls, signals: Iterable[int] = TERMINATION_SIGNALS
    ) -> "CancellationToken":
        """Create a token that is cancelled when one of ``signals`` arrives.

        Signal handlers can only be installed from the main thread; elsewhere
        the token is returned unbound. The first signal restores the previous
        handlers, so a second one gets the default behaviour.
        """
        token = cls()
        if threading.current_thread() is not threading.main_thread():
            CANCEL_LOGGER.debug(
                "Not in main thread, signal handlers not installed",
                extra={"event": "signals_unbound"},
            )
            return token
        threading.Thread(
            target=token._relay_signal, name="servicebox-signal-relay", daemon=True
        ).start()
        for signum in signals:
            token._previous_handlers[signum] = signal.signal(signum, token._on_signal)
        token.add_done_callback(token._release_relay)
        token.add_done_callback(token._restore_signal_handlers)
        return token

    def _on_signal(self, signum: int, _frame) -> None:
        # The interrupted main thread may hold self._lock; hand off to the relay.
        if self._signal_name is None:
            self._signal_name = signal.Signals(signum).name
            self._signalled.set()
        self._restore_signal_handlers()

    def _relay_signal(self) -> None:
        self._signalled.wait()
        if not self._signal_name:
            return
        CANCEL_LOGGER.info(
            "Received shutdown signal",
            extra={"event": "signal_received", "signal": self._signal_name},
        )
        self.cancel()

    def _release_relay(self) -> None:
        if self._signal_name is None:
            self._signal_name = ""
            self._signalled.set()

    def _restore_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        handlers, self._previous_handlers = self._previous_handlers, {}
        for signum, handler in handlers.items():
            signal.signal(signum, handler)

    @property
    def cancelled(self) -> bool:
        """Return True once the token has been cancelled."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Cancel the token; calls after the first one are no-ops."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        CANCEL_LOGGER.debug("Cancellation triggered", extra={"event": "cancelled"})
        for callback in callbacks:
            callback()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled; return False if ``timeout`` elapsed first."""
        return self._event.wait(timeout)

    def add_done_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once on cancellation, immediately if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()
