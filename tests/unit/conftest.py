"""Shared fixtures for unit tests."""

import logging

import pytest

from servicebox.bootstrap.environment import KUBERNETES_ENV_VAR


@pytest.fixture(autouse=True)
def enable_log_propagation():
    """Ensure logs propagate to root so caplog can catch them."""
    logger = logging.getLogger("servicebox")
    old_propagate = logger.propagate
    logger.propagate = True
    yield
    logger.propagate = old_propagate


@pytest.fixture(autouse=True)
def outside_kubernetes(monkeypatch):
    """Run unit tests as if outside Kubernetes unless a test opts in."""
    monkeypatch.delenv(KUBERNETES_ENV_VAR, raising=False)
