"""Read CPU and memory limits from the process cgroup."""

from pathlib import Path
from typing import Optional

CGROUP_ROOT = Path("/sys/fs/cgroup")

# cgroup v1 reports "no limit" as a huge page-aligned number
_V1_UNLIMITED_THRESHOLD = 1 << 60


def _read(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="ascii").strip()
    except FileNotFoundError:
        return None


def cpu_quota(root: Path = CGROUP_ROOT) -> Optional[float]:
    """Return the CPU quota in cores, or None when unlimited or unknown."""
    cpu_max = _read(root / "cpu.max")
    if cpu_max is not None:
        quota, _, period = cpu_max.partition(" ")
        if quota == "max":
            return None
        return int(quota) / int(period or "100000")

    quota_us = _read(root / "cpu" / "cpu.cfs_quota_us")
    period_us = _read(root / "cpu" / "cpu.cfs_period_us")
    if quota_us is None or period_us is None or int(quota_us) <= 0:
        return None
    return int(quota_us) / int(period_us)


def memory_limit(root: Path = CGROUP_ROOT) -> Optional[int]:
    """Return the memory limit in bytes, or None when unlimited or unknown."""
    memory_max = _read(root / "memory.max")
    if memory_max is not None:
        return None if memory_max == "max" else int(memory_max)

    limit = _read(root / "memory" / "memory.limit_in_bytes")
    if limit is None or int(limit) >= _V1_UNLIMITED_THRESHOLD:
        return None
    return int(limit)
