"""
Load monitor, the worker's admission-control gate.

The host counts as overloaded when either:
- the 1-minute load average divided by the core count exceeds
  LOAD_AVERAGE_THRESHOLD (0.5 by default), or
- this process's resident memory exceeds MEMORY_USAGE_THRESHOLD (60%) of the
  configured memory ceiling (MEMORY_LIMIT_BYTES, or total RAM when unset).

It is a heuristic. A missed overload just means one job runs on a busy host;
a false alarm just means the job waits for the next trigger.
"""

import logging
from typing import Optional

import psutil

from config.settings import settings

logger = logging.getLogger(__name__)


class LoadMonitor:

    def __init__(
        self,
        load_threshold: Optional[float] = None,
        memory_threshold: Optional[float] = None,
        memory_limit_bytes: Optional[int] = None,
    ):
        self._load_threshold = (
            load_threshold if load_threshold is not None else settings.LOAD_AVERAGE_THRESHOLD
        )
        self._memory_threshold = (
            memory_threshold if memory_threshold is not None else settings.MEMORY_USAGE_THRESHOLD
        )
        self._memory_limit_bytes = (
            memory_limit_bytes if memory_limit_bytes is not None else settings.MEMORY_LIMIT_BYTES
        )
        self._process = psutil.Process()

    def load_per_core(self) -> Optional[float]:
        """1-minute load average per core, or None where the platform has none."""
        try:
            load_1m, _, _ = psutil.getloadavg()
        except (AttributeError, OSError):
            return None
        return load_1m / (psutil.cpu_count() or 1)

    def memory_ratio(self) -> float:
        limit = self._memory_limit_bytes or psutil.virtual_memory().total
        return self._process.memory_info().rss / limit

    def is_overloaded(self) -> bool:
        load = self.load_per_core()
        if load is not None and load > self._load_threshold:
            logger.info(f"Host overloaded: load per core {load:.2f} > {self._load_threshold}")
            return True

        memory = self.memory_ratio()
        if memory > self._memory_threshold:
            logger.info(f"Host overloaded: memory at {memory:.0%} of limit")
            return True

        return False
