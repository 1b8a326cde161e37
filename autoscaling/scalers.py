"""
In-process ResourceScaler implementations for simulation and local runs.
"""

import random
import threading
import time
from typing import Dict, List, Optional, Tuple
import logging

from .executor import ResourceScaler

logger = logging.getLogger(__name__)


class SimulatedResourceScaler(ResourceScaler):
    """
    Pretends to provision capacity, optionally with random latency.

    Keeps its own view of each pool's size and a history of calls.
    """

    def __init__(self, min_latency: float = 0.0, max_latency: float = 0.0,
                 seed: Optional[int] = None):
        if min_latency < 0 or max_latency < min_latency:
            raise ValueError("Latency bounds must satisfy 0 <= min_latency <= max_latency")

        self.min_latency = min_latency
        self.max_latency = max_latency
        self._random = random.Random(seed)
        self._capacity: Dict[str, int] = {}
        self._calls: List[Tuple[str, int]] = []
        self._lock = threading.Lock()

    def scale_resource(self, pool: str, target_instances: int) -> bool:
        if self.max_latency > 0:
            time.sleep(self._random.uniform(self.min_latency, self.max_latency))

        with self._lock:
            self._capacity[pool] = target_instances
            self._calls.append((pool, target_instances))

        logger.info(f"Scaled {pool} to {target_instances} instances")
        return True

    @property
    def calls(self) -> List[Tuple[str, int]]:
        with self._lock:
            return list(self._calls)

    def capacity(self, pool: str) -> Optional[int]:
        with self._lock:
            return self._capacity.get(pool)


class FailingResourceScaler(ResourceScaler):
    """Fails every call; useful for exercising failure handling"""

    def __init__(self, message: str = "Provider unavailable"):
        self.message = message

    def scale_resource(self, pool: str, target_instances: int) -> bool:
        raise RuntimeError(self.message)
