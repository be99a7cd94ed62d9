"""Runtime environment detection."""

import os

KUBERNETES_ENV_VAR = "KUBERNETES_SERVICE_HOST"


def is_running_in_kubernetes() -> bool:
    """Return True when the process runs inside a Kubernetes pod."""
    return KUBERNETES_ENV_VAR in os.environ


def env_int(name: str, default: int) -> int:
    """Read an integer tuning value from the environment."""
    value = os.getenv(name)
    return int(value) if value is not None else default
