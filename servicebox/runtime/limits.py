"""One-time CPU and memory limit tuning for orchestrated environments."""

import math
import os
import resource
import threading
from pathlib import Path
from typing import Optional

from servicebox.bootstrap.config import Config
from servicebox.bootstrap.environment import is_running_in_kubernetes
from servicebox.bootstrap.logging_setup import component_logger
from servicebox.domain.errors import ResourceLimitError
from servicebox.runtime import cgroups

LIMITS_LOGGER = component_logger("runtime.limits")


class ResourceLimitGuard:
    """Applies the CPU floor and memory ratio at most once each.

    Both steps only run inside Kubernetes. Any failure raises
    ``ResourceLimitError``; an unenforceable limit is a configuration error.
    """

    def __init__(self, cgroup_root: Path = cgroups.CGROUP_ROOT) -> None:
        self.cgroup_root = cgroup_root
        self.cpu_threads: Optional[int] = None
        self.memory_limit_bytes: Optional[int] = None
        self._lock = threading.Lock()
        self._cpu_applied = False
        self._memory_applied = False

    def apply(self, config: Config) -> None:
        """Apply both limits from ``config`` when running in Kubernetes."""
        if not is_running_in_kubernetes():
            LIMITS_LOGGER.debug(
                "Not running in Kubernetes, resource limits left untouched",
                extra={"event": "limits_skipped"},
            )
            return
        self.apply_cpu_floor(config.cpu_min_threads)
        self.apply_memory_ratio(config.mem_limit_ratio)

    def _claim(self, attribute: str) -> bool:
        with self._lock:
            if getattr(self, attribute):
                return False
            setattr(self, attribute, True)
            return True

    def apply_cpu_floor(self, min_threads: int) -> Optional[int]:
        """Pin the process to ``max(cgroup quota, min_threads)`` CPUs."""
        if not self._claim("_cpu_applied"):
            return self.cpu_threads
        if not hasattr(os, "sched_setaffinity"):
            raise ResourceLimitError("cpu", "CPU affinity is not supported here")

        try:
            usable = sorted(os.sched_getaffinity(0))
            quota = cgroups.cpu_quota(self.cgroup_root)
            wanted = math.ceil(quota) if quota is not None else len(usable)
            threads = min(max(wanted, min_threads), len(usable))
            if threads < len(usable):
                os.sched_setaffinity(0, usable[:threads])
        except (OSError, ValueError) as error:
            raise ResourceLimitError("cpu", str(error), min_threads) from error

        self.cpu_threads = threads
        LIMITS_LOGGER.info(
            "CPU limit applied",
            extra={"event": "cpu_limit_applied", "cpu_threads": threads},
        )
        return threads

    def apply_memory_ratio(self, ratio: float) -> Optional[int]:
        """Cap the data segment at ``ratio`` of the cgroup memory limit."""
        if not self._claim("_memory_applied"):
            return self.memory_limit_bytes
        try:
            limit = cgroups.memory_limit(self.cgroup_root)
            if limit is None:
                LIMITS_LOGGER.info(
                    "No cgroup memory limit found, memory ratio not applied",
                    extra={"event": "memory_limit_skipped"},
                )
                return None
            soft = int(limit * ratio)
            _, hard = resource.getrlimit(resource.RLIMIT_DATA)
            if hard != resource.RLIM_INFINITY:
                soft = min(soft, hard)
            resource.setrlimit(resource.RLIMIT_DATA, (soft, hard))
        except (OSError, ValueError) as error:
            raise ResourceLimitError("memory", str(error), ratio) from error

        self.memory_limit_bytes = soft
        LIMITS_LOGGER.info(
            "Memory limit applied",
            extra={"event": "memory_limit_applied", "memory_limit_bytes": soft},
        )
        return soft
