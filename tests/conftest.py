"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Generator, Optional

import pytest

from servicebox.bootstrap.config import ConfigPatch
from servicebox.bootstrap.logging_setup import HANDLER_NAME, LOGGER_NAME
from servicebox.lifecycle.coordinator import listen_and_serve
from servicebox.options import Option, SetConfig
from servicebox.service import Service, new_service
from tests.utils.http import reserve_port

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"


@dataclass
class ServingService:
    """A service whose listen_and_serve runs in a background thread."""

    service: Service
    host: str
    port: int
    thread: threading.Thread
    outcome: dict = field(default_factory=dict)

    def stop(self, timeout: float = 5.0) -> Optional[BaseException]:
        """Cancel the service and return what listen_and_serve raised."""
        self.service.cancel()
        self.thread.join(timeout)
        return self.outcome.get("error")


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture(autouse=True)
def restore_service_logging() -> Generator[None, None, None]:
    """Undo logger changes made by configure_logging between tests."""

    logger = logging.getLogger(LOGGER_NAME)
    root = logging.getLogger()
    old_propagate, old_level, old_root_level = (
        logger.propagate,
        logger.level,
        root.level,
    )
    yield
    for target in (logger, root):
        for handler in list(target.handlers):
            if handler.get_name() == HANDLER_NAME:
                target.removeHandler(handler)
                handler.close()
    logger.propagate = old_propagate
    logger.setLevel(old_level)
    root.setLevel(old_root_level)


@pytest.fixture(name="serve")
def _serve() -> Generator[Callable[..., ServingService], None, None]:
    """Start services on a free local port; stop them after the test."""

    started: list[ServingService] = []

    def start(*options: Option, shutdown_timeout: float = 5.0) -> ServingService:
        host = "127.0.0.1"
        port = reserve_port(host)
        service = new_service(
            SetConfig(ConfigPatch(listen_address=f"{host}:{port}")),
            *options,
            handle_signals=False,
        )
        outcome: dict = {}

        def run() -> None:
            try:
                listen_and_serve(service, shutdown_timeout)
            except BaseException as error:  # pylint: disable=broad-except
                outcome["error"] = error

        thread = threading.Thread(target=run, name="test-serve", daemon=True)
        thread.start()
        assert service.web_server is not None
        assert service.web_server.listener.listening.wait(5.0)
        serving = ServingService(service, host, port, thread, outcome)
        started.append(serving)
        return serving

    yield start

    for serving in started:
        serving.stop()
